from __future__ import annotations

from typing import Any, Callable

from actions.admin_users import user_add, user_delete, user_update, users_bulk_upload, users_list
from actions.auth_actions import (
    create_auth_user,
    get_me,
    login,
    login_lookup,
    logout,
    send_verification_code,
    verify_email_code,
)
from actions.request_actions import (
    application_status_check,
    eligibility_get,
    exception_request_submit,
    job_application_submit,
    my_requests_list,
    request_get,
    request_withdraw,
    requests_list_all,
    resignation_submit,
)
from actions.review_actions import request_decide, review_queue
from utils import ApiError, AuthContext


Handler = Callable[[dict[str, Any], "AuthContext | None", Any, Any], Any]


ACTION_HANDLERS: dict[str, Handler] = {
    # Callable operations
    "SEND_VERIFICATION_CODE": send_verification_code,
    "VERIFY_CODE": verify_email_code,
    "CREATE_AUTH_USER": create_auth_user,
    # Login
    "LOGIN_LOOKUP": login_lookup,
    "LOGIN": login,
    "GET_ME": get_me,
    "LOGOUT": logout,
    # Requests
    "JOB_APPLICATION_SUBMIT": job_application_submit,
    "EXCEPTION_REQUEST_SUBMIT": exception_request_submit,
    "RESIGNATION_SUBMIT": resignation_submit,
    "MY_REQUESTS_LIST": my_requests_list,
    "REQUEST_GET": request_get,
    "REQUEST_WITHDRAW": request_withdraw,
    "ELIGIBILITY_GET": eligibility_get,
    "APPLICATION_STATUS_CHECK": application_status_check,
    "REQUESTS_LIST_ALL": requests_list_all,
    # Review
    "REVIEW_QUEUE": review_queue,
    "REQUEST_DECIDE": request_decide,
    # User administration
    "USERS_LIST": users_list,
    "USER_ADD": user_add,
    "USER_UPDATE": user_update,
    "USER_DELETE": user_delete,
    "USERS_BULK_UPLOAD": users_bulk_upload,
}


def dispatch(action: str, data: dict[str, Any], auth: AuthContext | None, db, cfg) -> Any:
    action_u = str(action or "").upper().strip()
    handler = ACTION_HANDLERS.get(action_u)
    if handler is None:
        raise ApiError("INVALID_ARGUMENT", f"Unknown action: {action_u}")
    if not isinstance(data, dict):
        raise ApiError("INVALID_ARGUMENT", "data must be an object")
    return handler(data, auth, db, cfg)
