from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from rotativos.core.security import get_current_user, require_admin
from rotativos.db.session import get_db
from rotativos.schemas.rules import RuleConfigOut, RuleConfigUpdate
from rotativos.services import rule_config
from rotativos.services.rule_config import LoadedRule

router = APIRouter(prefix="/api/v1/reglas", tags=["reglas"])


def _out(rule: LoadedRule) -> RuleConfigOut:
    return RuleConfigOut(
        key=rule.key,
        enabled=rule.enabled,
        priority=rule.priority,
        category=rule.category,
        description=rule.description,
        value=rule.value.model_dump(exclude={"key"}),
    )


@router.get("", response_model=list[RuleConfigOut])
def list_rules(user=Depends(get_current_user), db: Session = Depends(get_db)):
    return [_out(r) for r in rule_config.list_rules(db)]


@router.get("/{key}", response_model=RuleConfigOut)
def get_rule(key: str, user=Depends(get_current_user), db: Session = Depends(get_db)):
    return _out(rule_config.get_rule(db, key.upper()))


@router.put("/{key}", response_model=RuleConfigOut)
def update_rule(key: str, data: RuleConfigUpdate, admin=Depends(require_admin), db: Session = Depends(get_db)):
    rule = rule_config.update_rule(
        db, key.upper(), admin.id, value=data.value, enabled=data.enabled, priority=data.priority,
    )
    return _out(rule)
