# Scripts/make_admin.py
# Usage:
#   python Scripts/make_admin.py integrante@orquesta.org

import argparse

from rotativos.core.roles import ROLE_ADMIN
from rotativos.db.session import SessionLocal
from rotativos.models.user import User


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("email", help="Email del usuario a promover")
    args = ap.parse_args()

    db = SessionLocal()
    try:
        u = db.query(User).filter_by(email=args.email.lower().strip()).first()
        if not u:
            raise SystemExit(f"Usuario no encontrado: {args.email}")
        u.role = ROLE_ADMIN
        db.commit()
        print(f"OK: {u.email} ahora es admin")
    finally:
        db.close()


if __name__ == "__main__":
    main()
