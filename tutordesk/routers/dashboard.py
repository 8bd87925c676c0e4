from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from tutordesk.core.router_guard import require_auth_user, require_role
from tutordesk.db import get_db
from tutordesk.models import Role
from tutordesk.route_logging import EndpointNameRoute
from tutordesk.services.revenue_service import dashboard_stats


router = APIRouter(prefix='/dashboard', tags=['Dashboard'], route_class=EndpointNameRoute)


@router.get('/tutor')
def tutor_dashboard(user: dict = Depends(require_auth_user), db: Session = Depends(get_db)):
    require_role(user, {Role.TUTOR.value})
    return {'status': 'success', 'stats': dashboard_stats(db, user['user_id'])}
