import json

from django.conf import settings
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from core.db import persistence_errors
from core.exceptions import (
    ConcurrencyConflict,
    ConstraintViolation,
    GroupConfirmationError,
    NotFound,
    PermissionDenied,
    SaleError,
    UpstreamUnavailable,
    ValidationError,
)

from .confirmation import (
    confirm_sale,
    confirm_sale_group,
    preview_confirmation,
    read_sale,
)
from .forms import ConfirmationForm

ERROR_STATUS = {
    ValidationError: 400,
    NotFound: 404,
    PermissionDenied: 403,
    ConcurrencyConflict: 409,
    ConstraintViolation: 409,
    GroupConfirmationError: 409,
    UpstreamUnavailable: 503,
}


def _json_error(message, status=400, code="bad_request"):
    return JsonResponse({"error": message, "code": code}, status=status)


def _sale_error(exc):
    status = ERROR_STATUS.get(type(exc), 400)
    return JsonResponse(exc.as_dict(), status=status)


def _extract_api_token(request):
    auth = request.headers.get("Authorization", "").strip()
    if auth.lower().startswith("bearer "):
        return auth[7:].strip()
    return request.headers.get("X-API-Key", "").strip()


def _check_api_token(request):
    expected = (getattr(settings, "SALES_API_TOKEN", "") or "").strip()
    if not expected:
        return None
    token = _extract_api_token(request)
    if token != expected:
        return _json_error("Token inválido", status=401, code="invalid_token")
    return None


def _load_json(request):
    try:
        data = json.loads(request.body or b"{}")
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _user(request):
    return request.user if request.user.is_authenticated else None


def _money(value):
    return str(value) if value is not None else None


def _schedule_json(schedule):
    return [
        {
            "installment_number": item.installment_number,
            "amount_due": _money(item.amount_due),
            "due_date": item.due_date.isoformat(),
        }
        for item in schedule
    ]


def _breakdown_json(breakdown):
    if breakdown is None:
        return None
    return {
        "base_price": _money(breakdown.base_price),
        "advance_amount": _money(breakdown.advance_amount),
        "deposit_amount": _money(breakdown.deposit_amount),
        "advance_after_deposit": _money(breakdown.advance_after_deposit),
        "remaining_for_installments": _money(breakdown.remaining_for_installments),
        "monthly_payment": _money(breakdown.monthly_payment),
        "number_of_months": breakdown.number_of_months,
    }


def _sale_json(sale):
    return {
        "id": str(sale.pk),
        "status": sale.status,
        "payment_method": sale.payment_method,
        "sale_price": _money(sale.sale_price),
        "deposit_amount": _money(sale.deposit_amount),
        "partial_payment_amount": _money(sale.partial_payment_amount),
        "remaining_payment_amount": _money(sale.remaining_payment_amount),
        "company_fee_amount": _money(sale.company_fee_amount),
        "confirmation_amount": _money(sale.confirmation_amount),
    }


def _confirmation_form(data):
    form = ConfirmationForm(data)
    if not form.is_valid():
        errors = {name: [str(e) for e in errs] for name, errs in form.errors.items()}
        return None, JsonResponse(
            {"error": "Datos de confirmación inválidos", "code": "validation_error", "fields": errors},
            status=400,
        )
    return form, None


@require_http_methods(["GET"])
def api_confirmation_preview(request, sale_id):
    token_error = _check_api_token(request)
    if token_error:
        return token_error
    form, error = _confirmation_form(request.GET)
    if error:
        return error
    try:
        with persistence_errors("vista previa de confirmación"):
            sale = read_sale(sale_id)
            preview = preview_confirmation(sale, form.to_request())
    except SaleError as exc:
        return _sale_error(exc)
    return JsonResponse(
        {
            "sale": _sale_json(sale),
            "payment_method": preview.payment_method,
            "total_price": _money(preview.total_price),
            "deposit_amount": _money(preview.deposit_amount),
            "partial_payment_amount": _money(preview.partial_payment_amount),
            "confirmation_amount": _money(preview.confirmation_amount),
            "remaining_for_installments": _money(preview.remaining_for_installments),
            "breakdown": _breakdown_json(preview.breakdown),
            "schedule": _schedule_json(preview.schedule),
        }
    )


@csrf_exempt
@require_http_methods(["POST"])
def api_confirm_sale(request, sale_id):
    token_error = _check_api_token(request)
    if token_error:
        return token_error
    data = _load_json(request)
    if data is None:
        return _json_error("JSON inválido", code="invalid_json")
    form, error = _confirmation_form(data)
    if error:
        return error
    try:
        result = confirm_sale(sale_id, form.to_request(_user(request)))
    except SaleError as exc:
        return _sale_error(exc)
    return JsonResponse(
        {
            "sale": _sale_json(result.sale),
            "outcome": result.outcome,
            "amount_received": _money(result.amount_received),
            "remaining": _money(result.remaining),
            "installments_created": result.installments_created,
        }
    )


@csrf_exempt
@require_http_methods(["POST"])
def api_confirm_sale_group(request):
    token_error = _check_api_token(request)
    if token_error:
        return token_error
    data = _load_json(request)
    if data is None:
        return _json_error("JSON inválido", code="invalid_json")
    sale_ids = data.get("sale_ids")
    if not isinstance(sale_ids, list) or not sale_ids:
        return _json_error("sale_ids es requerido", code="missing_sale_ids")
    form, error = _confirmation_form(data)
    if error:
        return error
    try:
        result = confirm_sale_group(sale_ids, form.to_request(_user(request)))
    except SaleError as exc:
        return _sale_error(exc)
    return JsonResponse(
        {
            "sales": [_sale_json(sale) for sale in result.sales],
            "outcome": result.outcome,
            "amount_received": _money(result.amount_received),
            "remaining": _money(result.remaining),
            "installments_created": result.installments_created,
        }
    )
