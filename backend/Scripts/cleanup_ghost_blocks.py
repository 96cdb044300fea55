# Scripts/cleanup_ghost_blocks.py
# Cancela bloques activos que se quedaron sin rotativos vivos.
# Usage:
#   python Scripts/cleanup_ghost_blocks.py
#   python Scripts/cleanup_ghost_blocks.py --season-id 3

import argparse

from rotativos.core.logging import configure_logging
from rotativos.db.session import SessionLocal
from rotativos.services.blocks import sweep_ghost_blocks


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--season-id", type=int, default=None,
                    help="Limitar a una temporada (por defecto todas)")
    args = ap.parse_args()

    configure_logging()
    db = SessionLocal()
    try:
        cancelled = sweep_ghost_blocks(db, args.season_id)
    finally:
        db.close()

    if cancelled:
        print(f"DONE. Bloques cancelados: {', '.join(str(b) for b in cancelled)}")
    else:
        print("DONE. No hay bloques fantasma.")


if __name__ == "__main__":
    main()
