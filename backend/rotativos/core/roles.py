ROLE_INTEGRANTE = "INTEGRANTE"
ROLE_ADMIN = "ADMIN"

ALL_ROLES = {ROLE_INTEGRANTE, ROLE_ADMIN}
