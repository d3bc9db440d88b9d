"""
Payment gateway Azure Functions app.

HTTP surface for the gateway core:

- POST   /api/payments/{provider}/initiate     push-payment initiation
- POST   /api/callbacks/mpesa|jenga|kcb        provider callbacks
- POST   /api/credentials/{provider}           save provider credentials
- DELETE /api/credentials/{provider}           deactivate provider credentials
- POST   /api/credentials/{provider}/verify    token exchange against stored credentials
- POST   /api/reconciliation/{tenant_id}       tenant reconciliation sweep
- POST   /api/audit/{event_id}/replay          replay a dead-lettered callback

Run with: func start
"""

import os
import uuid
from typing import Any, Dict

import azure.functions as func
from dotenv import load_dotenv

from payment_gateway_core.config import AppConfig, set_config
from payment_gateway_core.constants import AuditEventType, AuditSeverity, Provider
from payment_gateway_core.db import get_development_config, get_production_config, initialize_db
from payment_gateway_core.exceptions import (
    BaseError,
    ErrorCode,
    ValidationError,
    clear_correlation_id,
    set_correlation_id,
)
from payment_gateway_core.services import (
    AuditService,
    CredentialVault,
    PaymentService,
    ReconciliationService,
    WebhookGuard,
)
from payment_gateway_core.utils import configure_logging, extract_client_address
from payment_gateway_core.utils.json_utils import dumps

load_dotenv()

config = AppConfig.from_env()
set_config(config)
logger = configure_logging("payment_gateway")

db_manager = initialize_db(
    get_production_config() if os.getenv("DB_HOST") else get_development_config()
)

app = func.FunctionApp()


def _json_response(body: Dict[str, Any], status_code: int = 200) -> func.HttpResponse:
    return func.HttpResponse(dumps(body), status_code=status_code, mimetype="application/json")


def _error_response(error: BaseError) -> func.HttpResponse:
    return _json_response(error.to_dict(), status_code=error.status_code)


def _request_json(req: func.HttpRequest) -> Dict[str, Any]:
    try:
        body = req.get_json()
    except ValueError:
        body = None
    if not isinstance(body, dict):
        raise ValidationError(
            "Invalid request: JSON object body required",
            error_code=ErrorCode.INVALID_FORMAT,
        )
    return body


def _provider(req: func.HttpRequest) -> Provider:
    name = req.route_params.get("provider", "")
    try:
        return Provider(name.lower())
    except ValueError:
        raise ValidationError(
            f"Unsupported provider: {name}",
            field="provider",
            error_code=ErrorCode.INVALID_FORMAT,
        ) from None


def _run(req: func.HttpRequest, handler) -> func.HttpResponse:
    """Run an API handler with a session and the standard error mapping."""
    set_correlation_id(req.headers.get("x-request-id") or str(uuid.uuid4()))
    session = db_manager.get_session()
    try:
        return handler(session)
    except BaseError as e:
        session.rollback()
        return _error_response(e)
    except Exception as e:
        session.rollback()
        logger.error(f"Unhandled error: {str(e)}", exc_info=True)
        return _json_response(
            {"error": {"code": ErrorCode.INTERNAL_ERROR.value, "message": "Internal error"}},
            status_code=500,
        )
    finally:
        db_manager.close_session(session)
        clear_correlation_id()


# ==================== PAYMENTS ====================


@app.function_name(name="InitiatePayment")
@app.route(route="payments/{provider}/initiate", methods=["POST"], auth_level=func.AuthLevel.FUNCTION)
def initiate_payment(req: func.HttpRequest) -> func.HttpResponse:
    """
    Example request:
    POST /api/payments/mpesa/initiate
    {
        "phone": "0712345678",
        "amount": "10000",
        "invoice_id": "..."
    }
    """

    def handler(session):
        body = _request_json(req)
        result = PaymentService(session, config).initiate_payment(
            _provider(req),
            phone=body.get("phone", ""),
            amount=body.get("amount"),
            invoice_id=body.get("invoice_id"),
            landlord_id=body.get("landlord_id"),
            tenant_id=body.get("tenant_id"),
            payment_type=body.get("payment_type") or "rent",
            description=body.get("description"),
        )
        return _json_response(result.model_dump(mode="json"))

    return _run(req, handler)


# ==================== CALLBACKS ====================


def _handle_callback(provider: Provider, req: func.HttpRequest) -> func.HttpResponse:
    """Callbacks are always answered 200, except for a forged source."""
    source_address = extract_client_address(
        dict(req.headers), trusted_hops=config.security.trusted_proxy_hops
    )
    session = db_manager.get_session()
    try:
        response = WebhookGuard(session, config).handle(provider, req.get_body(), source_address)
        return _json_response(response.body, status_code=response.status_code)
    except Exception as e:
        session.rollback()
        logger.error(
            f"Callback handling failed before it could be dead-lettered: {str(e)}",
            exc_info=True,
        )
        return _json_response({"ResultCode": 0, "ResultDesc": "Accepted"})
    finally:
        db_manager.close_session(session)


@app.function_name(name="MpesaCallback")
@app.route(route="callbacks/mpesa", methods=["POST"], auth_level=func.AuthLevel.ANONYMOUS)
def mpesa_callback(req: func.HttpRequest) -> func.HttpResponse:
    return _handle_callback(Provider.MPESA, req)


@app.function_name(name="JengaCallback")
@app.route(route="callbacks/jenga", methods=["POST"], auth_level=func.AuthLevel.ANONYMOUS)
def jenga_callback(req: func.HttpRequest) -> func.HttpResponse:
    return _handle_callback(Provider.JENGA, req)


@app.function_name(name="KcbCallback")
@app.route(route="callbacks/kcb", methods=["POST"], auth_level=func.AuthLevel.ANONYMOUS)
def kcb_callback(req: func.HttpRequest) -> func.HttpResponse:
    return _handle_callback(Provider.KCB, req)


# ==================== CREDENTIALS ====================


@app.function_name(name="SaveCredentials")
@app.route(route="credentials/{provider}", methods=["POST"], auth_level=func.AuthLevel.FUNCTION)
def save_credentials(req: func.HttpRequest) -> func.HttpResponse:
    """Responds with metadata only; secrets are never echoed."""

    def handler(session):
        body = _request_json(req)
        provider = _provider(req)
        landlord_id = body.get("landlord_id")
        if not landlord_id:
            raise ValidationError("landlord_id is required", field="landlord_id")

        vault = CredentialVault(session, config)
        with vault.transaction():
            metadata = vault.save(
                landlord_id,
                provider,
                secrets=body.get("secrets") or {},
                environment=body.get("environment") or "sandbox",
                shortcode=body.get("shortcode"),
                till_number=body.get("till_number"),
                shortcode_type=body.get("shortcode_type"),
            )
        AuditService(session, config).record(
            AuditEventType.CREDENTIAL_SAVED,
            f"{provider.value} credentials saved",
            provider=provider,
            payload={"landlord_id": landlord_id, "credential_id": metadata.id},
            severity=AuditSeverity.INFO,
        )
        return _json_response(metadata.model_dump(mode="json"))

    return _run(req, handler)


@app.function_name(name="DeactivateCredentials")
@app.route(route="credentials/{provider}", methods=["DELETE"], auth_level=func.AuthLevel.FUNCTION)
def deactivate_credentials(req: func.HttpRequest) -> func.HttpResponse:
    def handler(session):
        provider = _provider(req)
        landlord_id = req.params.get("landlord_id")
        if not landlord_id:
            raise ValidationError("landlord_id is required", field="landlord_id")

        vault = CredentialVault(session, config)
        with vault.transaction():
            deactivated = vault.deactivate(landlord_id, provider)
        if deactivated:
            AuditService(session, config).record(
                AuditEventType.CREDENTIAL_DEACTIVATED,
                f"{provider.value} credentials deactivated",
                provider=provider,
                payload={"landlord_id": landlord_id},
                severity=AuditSeverity.INFO,
            )
        return _json_response({"provider": provider.value, "deactivated": deactivated})

    return _run(req, handler)


@app.function_name(name="VerifyCredentials")
@app.route(
    route="credentials/{provider}/verify", methods=["POST"], auth_level=func.AuthLevel.FUNCTION
)
def verify_credentials(req: func.HttpRequest) -> func.HttpResponse:
    def handler(session):
        body = _request_json(req)
        landlord_id = body.get("landlord_id")
        if not landlord_id:
            raise ValidationError("landlord_id is required", field="landlord_id")
        metadata = PaymentService(session, config).verify_credentials(landlord_id, _provider(req))
        return _json_response(metadata.model_dump(mode="json"))

    return _run(req, handler)


# ==================== OPERATIONS ====================


@app.function_name(name="ReconcileTenant")
@app.route(route="reconciliation/{tenant_id}", methods=["POST"], auth_level=func.AuthLevel.FUNCTION)
def reconcile_tenant(req: func.HttpRequest) -> func.HttpResponse:
    def handler(session):
        service = ReconciliationService(session)
        with service.transaction():
            result = service.reconcile_tenant(req.route_params["tenant_id"])
        return _json_response({**result.model_dump(mode="json"), "changed": result.changed})

    return _run(req, handler)


@app.function_name(name="ReplayAuditEvent")
@app.route(route="audit/{event_id}/replay", methods=["POST"], auth_level=func.AuthLevel.FUNCTION)
def replay_audit_event(req: func.HttpRequest) -> func.HttpResponse:
    def handler(session):
        response = WebhookGuard(session, config).replay(req.route_params["event_id"])
        return _json_response(
            {"event_id": req.route_params["event_id"], "outcome": response.outcome}
        )

    return _run(req, handler)
