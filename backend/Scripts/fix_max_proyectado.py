# Scripts/fix_max_proyectado.py
# Repara max_proyectado guardado en los balances de la temporada.
# Usage:
#   python Scripts/fix_max_proyectado.py
#   python Scripts/fix_max_proyectado.py --scope all --season-id 3

import argparse

from rotativos.core.logging import configure_logging
from rotativos.db.session import SessionLocal
from rotativos.services import capacity
from rotativos.services.balance import ALL, ZERO_ONLY, recalculate_projected_max


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--season-id", type=int, default=None,
                    help="Temporada (por defecto la activa)")
    ap.add_argument("--scope", choices=[ZERO_ONLY, ALL], default=ZERO_ONLY,
                    help="zero_only: solo filas en 0; all: todas las filas sin ajuste manual")
    args = ap.parse_args()

    configure_logging()
    db = SessionLocal()
    try:
        season_id = capacity.resolve_season_id(db, args.season_id)
        summary = capacity.season_summary(db, season_id)
        updated = recalculate_projected_max(db, season_id, args.scope)
    finally:
        db.close()

    print(
        f"DONE. Cupo total {summary.total_capacity} / {summary.members} integrantes "
        f"= {summary.max_per_member}. Balances actualizados: {updated}."
    )


if __name__ == "__main__":
    main()
