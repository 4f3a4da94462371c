"""
Notifications -- post-commit messages for patients.

Responsibility:
    Builds the certification and recall messages sent to a patient's phone
    and defines the publisher port the kernel hands them to.  Delivery
    (Kakao alimtalk, SMS, ...) belongs to the external dispatcher.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  The facade calls
    ``publish_safely`` only after the ledger transaction has committed.

Failure modes:
    A publisher that raises never affects the ledger: ``publish_safely``
    logs ``notification_publish_failed`` and returns False.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Protocol, runtime_checkable
from uuid import UUID

from certify_kernel.domain.phone import mask_phone
from certify_kernel.logging_config import get_logger

logger = get_logger("domain.notifications")


class NotificationType(str, Enum):
    CERTIFICATION = "certification"
    RECALL = "recall"


@dataclass(frozen=True)
class ProductLine:
    product_name: str
    quantity: int


@dataclass(frozen=True)
class PatientNotification:
    """A message addressed to a patient phone number."""

    notification_type: NotificationType
    event_id: UUID
    patient_phone: str
    hospital_name: str
    body: str
    unit_codes: tuple[str, ...] = ()
    metadata: dict[str, str] = field(default_factory=dict)


@runtime_checkable
class NotificationPublisher(Protocol):
    """Fire-and-forget sink for patient notifications."""

    def publish(self, notification: PatientNotification) -> None: ...


class NullPublisher:
    """Publisher that drops every notification."""

    def publish(self, notification: PatientNotification) -> None:
        logger.debug(
            "notification_dropped",
            extra={
                "notification_type": notification.notification_type.value,
                "event_id": str(notification.event_id),
            },
        )


def _product_lines(lines: list[ProductLine]) -> str:
    return "\n".join(f"- {line.product_name} {line.quantity}개" for line in lines)


def build_certification_notice(
    event_id: UUID,
    patient_phone: str,
    hospital_name: str,
    treatment_date: date,
    products: list[ProductLine],
    unit_codes: tuple[str, ...],
) -> PatientNotification:
    """Certificate-of-authenticity message sent after a treatment."""
    customer = f"{mask_phone(patient_phone)} 고객"
    body = (
        f"{customer}님, 안녕하세요.\n\n"
        f"{treatment_date.isoformat()}에 {hospital_name}에서 시술받으신 제품의 "
        "정품 인증이 완료되었습니다.\n\n"
        "■ 시술 정보\n"
        f"{_product_lines(products)}\n"
        f"- 시술일: {treatment_date.isoformat()}\n"
        f"- 시술 병원: {hospital_name}\n\n"
        "본 제품은 정식 유통 경로를 통해 공급된 정품임이 확인되었습니다."
    )
    return PatientNotification(
        notification_type=NotificationType.CERTIFICATION,
        event_id=event_id,
        patient_phone=patient_phone,
        hospital_name=hospital_name,
        body=body,
        unit_codes=unit_codes,
        metadata={"treatment_date": treatment_date.isoformat()},
    )


def build_recall_notice(
    event_id: UUID,
    patient_phone: str,
    hospital_name: str,
    hospital_contact: str | None,
    reason: str,
    products: list[ProductLine],
) -> PatientNotification:
    """Message telling the patient a certificate has been withdrawn."""
    customer = f"{mask_phone(patient_phone)} 고객"
    body = (
        f"{customer}님, 안녕하세요.\n\n"
        f"{hospital_name}에서 발급한 정품 인증이 회수되었음을 안내드립니다.\n\n"
        "■ 회수 정보\n"
        f"- 병원: {hospital_name}\n"
        f"- 병원 연락처: {hospital_contact or '-'}\n"
        f"- 회수 사유: {reason}\n"
        f"{_product_lines(products)}\n\n"
        "문의사항은 해당 병원으로 연락해주세요."
    )
    return PatientNotification(
        notification_type=NotificationType.RECALL,
        event_id=event_id,
        patient_phone=patient_phone,
        hospital_name=hospital_name,
        body=body,
        metadata={"reason": reason},
    )


def publish_safely(
    publisher: NotificationPublisher, notification: PatientNotification
) -> bool:
    """
    Hand a notification to the publisher without letting failures escape.

    Returns:
        True if the publisher accepted the message, False if it raised.
    """
    try:
        publisher.publish(notification)
    except Exception:
        logger.warning(
            "notification_publish_failed",
            exc_info=True,
            extra={
                "notification_type": notification.notification_type.value,
                "event_id": str(notification.event_id),
            },
        )
        return False
    logger.info(
        "notification_published",
        extra={
            "notification_type": notification.notification_type.value,
            "event_id": str(notification.event_id),
        },
    )
    return True
