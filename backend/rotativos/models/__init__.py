# Importa aquí los modelos para que SQLAlchemy los "vea" al crear tablas
from rotativos.models.user import User  # noqa: F401
from rotativos.models.season import Season  # noqa: F401
from rotativos.models.titulo import Titulo  # noqa: F401
from rotativos.models.event import Event  # noqa: F401
from rotativos.models.block import Block  # noqa: F401
from rotativos.models.rotativo import Rotativo  # noqa: F401
from rotativos.models.balance import UserSeasonBalance  # noqa: F401
from rotativos.models.rule_config import RuleConfig  # noqa: F401
from rotativos.models.waiting_list import WaitingListEntry  # noqa: F401
from rotativos.models.license import License  # noqa: F401
from rotativos.models.audit import AuditLog, Notification  # noqa: F401
