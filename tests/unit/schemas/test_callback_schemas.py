"""
Tests for callback parsing into CallbackResult.
"""

from decimal import Decimal

import pytest

from payment_gateway_core.constants import Provider
from payment_gateway_core.exceptions import ErrorCode, ValidationError
from payment_gateway_core.schemas.callback_schemas import detect_variant, parse_callback


def stk_success(amount=1500, checkout_id="ws_CO_191220191020363925", receipt="NLJ7RT61SV"):
    return {
        "Body": {
            "stkCallback": {
                "MerchantRequestID": "29115-34620561-1",
                "CheckoutRequestID": checkout_id,
                "ResultCode": 0,
                "ResultDesc": "The service request is processed successfully.",
                "CallbackMetadata": {
                    "Item": [
                        {"Name": "Amount", "Value": amount},
                        {"Name": "MpesaReceiptNumber", "Value": receipt},
                        {"Name": "Balance"},
                        {"Name": "TransactionDate", "Value": 20191219102115},
                        {"Name": "PhoneNumber", "Value": 254708374149},
                    ]
                },
            }
        }
    }


class TestMpesaStk:
    def test_success(self):
        result = parse_callback(Provider.MPESA, stk_success())

        assert result.provider == Provider.MPESA
        assert result.success is True
        assert result.result_code == "0"
        assert result.amount == Decimal("1500")
        assert result.receipt == "NLJ7RT61SV"
        assert result.phone == "254708374149"
        assert result.transaction_date == "20191219102115"
        assert result.correlation_ids == ["ws_CO_191220191020363925", "29115-34620561-1"]
        assert result.correlation_id == "ws_CO_191220191020363925"

    def test_cancelled_by_user(self):
        payload = {
            "Body": {
                "stkCallback": {
                    "MerchantRequestID": "29115-34620561-1",
                    "CheckoutRequestID": "ws_CO_191220191020363925",
                    "ResultCode": 1032,
                    "ResultDesc": "Request cancelled by user",
                }
            }
        }

        result = parse_callback(Provider.MPESA, payload)

        assert result.success is False
        assert result.result_code == "1032"
        assert result.amount is None
        assert result.receipt is None

    def test_missing_checkout_id_is_invalid(self):
        payload = stk_success()
        del payload["Body"]["stkCallback"]["CheckoutRequestID"]

        with pytest.raises(ValidationError) as exc_info:
            parse_callback(Provider.MPESA, payload)

        assert exc_info.value.error_code == ErrorCode.INVALID_FORMAT
        assert any(
            loc.endswith("Body.stkCallback.CheckoutRequestID")
            for loc in exc_info.value.context["errors"]
        )

    def test_missing_root_fields(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_callback(Provider.MPESA, {"hello": "world"})

        assert exc_info.value.error_code == ErrorCode.MISSING_REQUIRED


class TestKcb:
    def test_stk_callback_is_tagged_kcb(self):
        result = parse_callback(Provider.KCB, stk_success(checkout_id="ws_CO_KCB_1"))

        assert result.provider == Provider.KCB
        assert result.correlation_id == "ws_CO_KCB_1"

    def test_c2b_confirmation(self):
        payload = {
            "TransactionType": "Pay Bill",
            "TransID": "RKTQDM7W6S",
            "TransTime": "20240101120000",
            "TransAmount": "2500.00",
            "BusinessShortCode": "522522",
            "BillRefNumber": "7654321-INV-1",
            "MSISDN": "0712345678",
        }

        result = parse_callback(Provider.KCB, payload)

        assert result.success is True
        assert result.amount == Decimal("2500.00")
        assert result.receipt == "RKTQDM7W6S"
        assert result.correlation_ids == ["RKTQDM7W6S", "7654321-INV-1"]
        assert result.phone == "254712345678"


class TestJengaIpn:
    def payload(self, status="SUCCESS"):
        return {
            "callbackType": "IPN",
            "customer": {"name": "Jane", "mobileNumber": "254712345678", "reference": "1"},
            "transaction": {
                "date": "2024-01-01 12:00:00",
                "reference": "T-1",
                "paymentMode": "MPESA",
                "amount": "1000",
                "billNumber": "INV-1",
                "orderReference": "OR17000000000ABCDE",
                "status": status,
                "remarks": "done",
            },
            "bank": {"reference": "FT24001ABC", "transactionType": "C", "account": None},
        }

    def test_success(self):
        result = parse_callback(Provider.JENGA, self.payload())

        assert result.success is True
        assert result.amount == Decimal("1000")
        assert result.receipt == "FT24001ABC"
        assert result.correlation_ids == ["OR17000000000ABCDE", "INV-1", "T-1"]

    def test_failure(self):
        result = parse_callback(Provider.JENGA, self.payload(status="FAILED"))

        assert result.success is False
        assert result.result_code == "FAILED"
        assert result.amount is None

    def test_missing_status(self):
        payload = self.payload()
        del payload["transaction"]["status"]

        with pytest.raises(ValidationError):
            parse_callback(Provider.JENGA, payload)


class TestDetectVariant:
    def test_provider_decides_shape(self):
        assert detect_variant(Provider.MPESA, {"Body": {}}) == "mpesa_stk"
        assert detect_variant(Provider.KCB, {"Body": {}}) == "kcb_stk"
        assert detect_variant(Provider.KCB, {"TransID": "x"}) == "kcb_c2b"
        assert detect_variant(Provider.JENGA, {"callbackType": "IPN", "transaction": {}}) == "jenga_ipn"

    def test_unknown_shapes(self):
        assert detect_variant(Provider.MPESA, {"TransID": "x"}) is None
        assert detect_variant(Provider.JENGA, {"Body": {}}) is None
        assert detect_variant(Provider.MPESA, None) is None
