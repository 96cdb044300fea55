# Scripts/seed_rules.py
# Usage:
#   python Scripts/seed_rules.py
#   python Scripts/seed_rules.py --overwrite

import argparse

from rotativos.core.logging import configure_logging
from rotativos.db.init_db import init_db
from rotativos.db.session import SessionLocal
from rotativos.services.rule_config import seed_default_rules


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--overwrite", action="store_true",
                    help="Resetea valores y metadatos de las reglas existentes")
    args = ap.parse_args()

    configure_logging()
    init_db()
    db = SessionLocal()
    try:
        created = seed_default_rules(db, overwrite=args.overwrite)
    finally:
        db.close()

    print(f"DONE. {created} regla(s) creada(s).")


if __name__ == "__main__":
    main()
