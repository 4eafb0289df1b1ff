"""
Wizard API Routes
JSON endpoints the browser front end drives the worksheet wizard through
"""
import inspect
import logging
from typing import Callable

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from worksheet_wizard.client.api_client import (
    APIValidationError,
    AuthExpiredError,
    LoginFailedError,
    NetworkError,
    WorksheetAPIError,
)
from worksheet_wizard.models.wizard_requests import (
    BoardSelection,
    ExportResult,
    FormUpdate,
    GradeSelection,
    LoginRequest,
    WizardView,
)
from worksheet_wizard.services.wizard import (
    FormIncompleteError,
    InvalidTransitionError,
    NoWorksheetError,
    WizardController,
    WizardError,
    get_wizard_controller,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/wizard")

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

ERROR_STATUS = [
    (AuthExpiredError, status.HTTP_401_UNAUTHORIZED),
    (LoginFailedError, status.HTTP_401_UNAUTHORIZED),
    (APIValidationError, status.HTTP_400_BAD_REQUEST),
    (FormIncompleteError, status.HTTP_400_BAD_REQUEST),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (NoWorksheetError, status.HTTP_404_NOT_FOUND),
    (NetworkError, status.HTTP_502_BAD_GATEWAY),
]

KNOWN_ERRORS = (WorksheetAPIError, WizardError)


def _http_error(e: Exception) -> HTTPException:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(e, error_type):
            return HTTPException(status_code=status_code, detail=str(e))
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))


def _unexpected(e: Exception, action: str) -> HTTPException:
    logger.error(f"Unexpected error while trying to {action}: {e}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="An unexpected error occurred"
    )


async def _run(action: str, operation: Callable) -> None:
    try:
        result = operation()
        if inspect.isawaitable(result):
            await result
    except KNOWN_ERRORS as e:
        logger.info(f"Could not {action}: {e}")
        raise _http_error(e)
    except Exception as e:
        raise _unexpected(e, action)


# ============================================================================
# ENDPOINTS
# ============================================================================

@router.get("/state", response_model=WizardView, summary="Current wizard state")
async def get_state(wizard: WizardController = Depends(get_wizard_controller)) -> WizardView:
    return WizardView(**wizard.view())


@router.post(
    "/login",
    response_model=WizardView,
    responses={
        401: {"description": "Invalid credentials"},
        502: {"description": "Worksheet API unreachable"}
    },
    summary="Log in to the worksheet API",
    description="""
    Exchange credentials for an access token and move to the Configure step.
    The board catalog is loaded right after login.
    """
)
async def login(
    request: LoginRequest,
    wizard: WizardController = Depends(get_wizard_controller)
) -> WizardView:
    await _run("log in", lambda: wizard.login(request.username, request.password))
    return WizardView(**wizard.view())


@router.post("/board", response_model=WizardView, summary="Select a board and load its grades")
async def select_board(
    request: BoardSelection,
    wizard: WizardController = Depends(get_wizard_controller)
) -> WizardView:
    await _run("select a board", lambda: wizard.select_board(request.board))
    return WizardView(**wizard.view())


@router.post("/grade", response_model=WizardView, summary="Select a grade and load its subjects")
async def select_grade(
    request: GradeSelection,
    wizard: WizardController = Depends(get_wizard_controller)
) -> WizardView:
    await _run("select a grade", lambda: wizard.select_grade(request.grade))
    return WizardView(**wizard.view())


@router.patch(
    "/form",
    response_model=WizardView,
    summary="Update generation parameters",
    description="""
    Apply a partial update to the Configure form. Difficulty and Bloom totals
    are reported back in the response; a total other than 100 does not block
    submission.
    """
)
async def update_form(
    request: FormUpdate,
    wizard: WizardController = Depends(get_wizard_controller)
) -> WizardView:
    changes = request.model_dump(exclude_unset=True)
    await _run("update the form", lambda: wizard.update_form(changes))
    return WizardView(**wizard.view())


@router.post(
    "/metadata",
    response_model=WizardView,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start metadata generation"
)
async def submit_metadata(wizard: WizardController = Depends(get_wizard_controller)) -> WizardView:
    await _run("generate metadata", wizard.submit_metadata)
    return WizardView(**wizard.view())


@router.post(
    "/question-config",
    response_model=WizardView,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Submit the reviewed metadata for question configuration"
)
async def submit_question_config(wizard: WizardController = Depends(get_wizard_controller)) -> WizardView:
    await _run("submit the question config", wizard.submit_question_config)
    return WizardView(**wizard.view())


@router.post(
    "/worksheet",
    response_model=WizardView,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start worksheet generation"
)
async def generate_worksheet(wizard: WizardController = Depends(get_wizard_controller)) -> WizardView:
    await _run("generate the worksheet", wizard.generate_worksheet)
    return WizardView(**wizard.view())


@router.post("/create-another", response_model=WizardView, summary="Start a new worksheet")
async def create_another(wizard: WizardController = Depends(get_wizard_controller)) -> WizardView:
    await _run("create another worksheet", wizard.create_another)
    return WizardView(**wizard.view())


@router.post("/logout", response_model=WizardView, summary="Log out and clear the session")
async def logout(wizard: WizardController = Depends(get_wizard_controller)) -> WizardView:
    wizard.logout()
    return WizardView(**wizard.view())


@router.get(
    "/export",
    response_class=Response,
    responses={
        200: {"content": {XLSX_MEDIA_TYPE: {}}, "description": "Worksheet workbook"},
        404: {"description": "No finished worksheet"}
    },
    summary="Download the worksheet as an Excel workbook"
)
async def download_export(wizard: WizardController = Depends(get_wizard_controller)) -> Response:
    try:
        filename, content = wizard.export_download()
    except KNOWN_ERRORS as e:
        raise _http_error(e)
    except Exception as e:
        raise _unexpected(e, "export the worksheet")

    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )


@router.post(
    "/export",
    response_model=ExportResult,
    status_code=status.HTTP_201_CREATED,
    summary="Write the worksheet workbook to the export directory"
)
async def save_export(wizard: WizardController = Depends(get_wizard_controller)) -> ExportResult:
    try:
        path = wizard.export_worksheet()
    except KNOWN_ERRORS as e:
        raise _http_error(e)
    except Exception as e:
        raise _unexpected(e, "export the worksheet")

    return ExportResult(path=path)
