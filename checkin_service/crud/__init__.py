# checkin_service/crud/__init__.py

from .crud_check_in import check_in
from .crud_check_in_attempt import check_in_attempt
from .crud_participant import participant
from .crud_registration import registration
from .crud_session import session
