from app.core.models.fee_structure import FeeStructure
from app.core.models.student_fee_account import StudentFeeAccount
from app.core.models.payment import Payment
from app.core.models.push_payment_request import PushPaymentRequest
from app.core.models.callback_discrepancy import CallbackDiscrepancy
from app.core.models.fee_audit_log import FeeAuditLog

__all__ = [
    "FeeStructure",
    "StudentFeeAccount",
    "Payment",
    "PushPaymentRequest",
    "CallbackDiscrepancy",
    "FeeAuditLog",
]
