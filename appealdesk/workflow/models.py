"""SQLAlchemy models for appeals and the records that reference them."""
from sqlalchemy import (
    Column, Integer, BigInteger, String, Boolean, DateTime, Date, Numeric, Text, ForeignKey,
    Enum, JSON, Index, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import relationship

from appealdesk.db import Base, now_utc
from appealdesk.permissions import Role
from .states import AppealStatus


def _values(enum_cls):
    return [m.value for m in enum_cls]


AppealStatusEnum = Enum(AppealStatus, name='appeal_status', values_callable=_values)
RoleEnum = Enum(Role, name='user_role', values_callable=_values)
PriorityEnum = Enum('high', 'medium', 'low', name='appeal_priority')
DonationModeEnum = Enum('cheque', 'bank_transfer', name='donation_mode')
DonationStatusEnum = Enum('PENDING', 'CONFIRMED', 'FAILED', name='donation_status')
PaymentStatusEnum = Enum('pending', 'processing', 'paid', name='payment_status')
ChannelEnum = Enum('EMAIL', 'TELEGRAM', 'SMS', 'WHATSAPP', name='comm_channel')
CommStatusEnum = Enum('SENT', 'FAILED', name='comm_status')
TriggerEnum = Enum('APPROVAL', 'REJECTION', 'MANUAL', name='comm_trigger')
OutboxStatusEnum = Enum('pending', 'delivered', 'abandoned', name='outbox_status')
AssetOwnerEnum = Enum('itc', 'mission', name='asset_owner')


class User(Base):
    __tablename__ = 'users'
    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    role = Column(RoleEnum, nullable=False, default=Role.VIEWER)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=now_utc)


class Appeal(Base):
    __tablename__ = 'appeals'
    id = Column(Integer, primary_key=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    estimated_amount = Column(Numeric(14, 2), nullable=False)
    approved_amount = Column(Numeric(14, 2), nullable=True)
    beneficiary_category = Column(String(120), nullable=False)
    duration = Column(String(120), nullable=False)
    priority = Column(PriorityEnum, default='medium')
    status = Column(AppealStatusEnum, nullable=False, default=AppealStatus.DRAFT, index=True)
    rejection_reason = Column(Text, nullable=True)
    approval_remarks = Column(Text, nullable=True)
    approval_conditions = Column(Text, nullable=True)
    created_by = Column(Integer, ForeignKey('users.id'), nullable=False)
    created_at = Column(DateTime, default=now_utc, nullable=False)
    submitted_at = Column(DateTime, nullable=True)
    decided_at = Column(DateTime, nullable=True)
    decided_by = Column(Integer, ForeignKey('users.id'), nullable=True)
    creator = relationship('User', foreign_keys=[created_by])
    documents = relationship(
        'AppealDocument', order_by='AppealDocument.position',
        cascade='all, delete-orphan', back_populates='appeal',
    )
    audit = relationship(
        'AppealAudit', order_by='AppealAudit.id',
        cascade='all, delete-orphan', back_populates='appeal',
    )
    __table_args__ = (
        CheckConstraint("(status = 'APPROVED') = (approved_amount IS NOT NULL)", name='ck_appeal_approved_amount'),
        CheckConstraint("(status = 'REJECTED') = (rejection_reason IS NOT NULL)", name='ck_appeal_rejection_reason'),
        CheckConstraint('estimated_amount > 0', name='ck_appeal_estimated_positive'),
        CheckConstraint('approved_amount IS NULL OR approved_amount > 0', name='ck_appeal_approved_positive'),
    )

    @property
    def document_count(self) -> int:
        return len(self.documents)


class AppealDocument(Base):
    __tablename__ = 'appeal_documents'
    id = Column(Integer, primary_key=True)
    appeal_id = Column(Integer, ForeignKey('appeals.id', ondelete='CASCADE'), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    file_name = Column(String(255), nullable=False)
    content_type = Column(String(120), nullable=True)
    size_bytes = Column(Integer, nullable=True)
    storage_ref = Column(String(500), nullable=True)
    uploaded_at = Column(DateTime, default=now_utc)
    appeal = relationship('Appeal', back_populates='documents')


class AppealAudit(Base):
    __tablename__ = 'appeal_audit'
    id = Column(Integer, primary_key=True)
    appeal_id = Column(Integer, ForeignKey('appeals.id', ondelete='CASCADE'), nullable=False, index=True)
    action = Column(String(40), nullable=False)
    actor_id = Column(Integer, nullable=False)
    from_status = Column(String(20), nullable=True)
    to_status = Column(String(20), nullable=True)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime, default=now_utc)
    appeal = relationship('Appeal', back_populates='audit')


class Donor(Base):
    __tablename__ = 'donors'
    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    email = Column(String(255), unique=True, nullable=True)
    phone = Column(String(40), nullable=True)
    telegram_chat_id = Column(BigInteger, nullable=True)
    created_at = Column(DateTime, default=now_utc)


class DonorAppeal(Base):
    __tablename__ = 'donor_appeals'
    id = Column(Integer, primary_key=True)
    donor_id = Column(Integer, ForeignKey('donors.id'), nullable=False)
    appeal_id = Column(Integer, ForeignKey('appeals.id'), nullable=False, index=True)
    linked_at = Column(DateTime, default=now_utc, nullable=False)
    donor = relationship('Donor')
    __table_args__ = (
        UniqueConstraint('donor_id', 'appeal_id', name='uq_donor_appeal'),
    )


class Donation(Base):
    __tablename__ = 'donations'
    id = Column(Integer, primary_key=True)
    donor_id = Column(Integer, ForeignKey('donors.id'), nullable=False)
    appeal_id = Column(Integer, ForeignKey('appeals.id'), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    mode = Column(DonationModeEnum, nullable=False)
    cheque_number = Column(String(40), nullable=True)
    cheque_date = Column(Date, nullable=True)
    transaction_ref = Column(String(80), nullable=True)
    receiving_entity = Column(String(120), nullable=True)
    received_at = Column(DateTime, default=now_utc, index=True)
    received_by = Column(Integer, ForeignKey('users.id'), nullable=False)
    status = Column(DonationStatusEnum, default='PENDING', nullable=False)
    failure_reason = Column(Text, nullable=True)
    donor = relationship('Donor')
    __table_args__ = (
        Index('idx_donations_appeal_status', 'appeal_id', 'status'),
        CheckConstraint('amount > 0', name='ck_donation_amount_positive'),
    )


class Utilization(Base):
    __tablename__ = 'utilizations'
    id = Column(Integer, primary_key=True)
    appeal_id = Column(Integer, ForeignKey('appeals.id'), nullable=False, index=True)
    utilization_date = Column(Date, nullable=False)
    description = Column(Text, nullable=False)
    amount_utilized = Column(Numeric(14, 2), nullable=False)
    vendor_name = Column(String(255), nullable=True)
    vendor_details = Column(Text, nullable=True)
    invoice_number = Column(String(80), nullable=True)
    po_number = Column(String(80), nullable=True)
    payment_status = Column(PaymentStatusEnum, default='pending')
    created_by = Column(Integer, ForeignKey('users.id'), nullable=False)
    created_at = Column(DateTime, default=now_utc)
    __table_args__ = (
        CheckConstraint('amount_utilized > 0', name='ck_utilization_amount_positive'),
    )


class AssetLink(Base):
    __tablename__ = 'asset_links'
    id = Column(Integer, primary_key=True)
    utilization_id = Column(Integer, ForeignKey('utilizations.id'), nullable=False, index=True)
    appeal_id = Column(Integer, ForeignKey('appeals.id'), nullable=False, index=True)
    asset_registration_number = Column(String(80), nullable=False)
    asset_name = Column(String(255), nullable=False)
    asset_owner = Column(AssetOwnerEnum, nullable=False)
    notes = Column(Text, nullable=True)
    linked_by = Column(Integer, ForeignKey('users.id'), nullable=False)
    linked_at = Column(DateTime, default=now_utc)
    utilization = relationship('Utilization')
    appeal = relationship('Appeal')
    __table_args__ = (
        UniqueConstraint('utilization_id', 'asset_registration_number', name='uq_asset_link'),
    )


class Beneficiary(Base):
    __tablename__ = 'beneficiaries'
    id = Column(Integer, primary_key=True)
    appeal_id = Column(Integer, ForeignKey('appeals.id'), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    phone = Column(String(40), nullable=True)
    email = Column(String(255), nullable=True)
    location = Column(String(255), nullable=True)
    category = Column(String(120), nullable=True)
    impact_received = Column(Text, nullable=True)
    feedback_rating = Column(Integer, nullable=True)
    feedback_text = Column(Text, nullable=True)
    registered_by = Column(Integer, ForeignKey('users.id'), nullable=False)
    registered_at = Column(DateTime, default=now_utc)
    __table_args__ = (
        CheckConstraint('feedback_rating IS NULL OR feedback_rating BETWEEN 1 AND 5', name='ck_beneficiary_rating'),
    )


class Communication(Base):
    __tablename__ = 'communications'
    id = Column(Integer, primary_key=True)
    appeal_id = Column(Integer, ForeignKey('appeals.id'), nullable=False, index=True)
    donor_id = Column(Integer, ForeignKey('donors.id'), nullable=False)
    channel = Column(ChannelEnum, nullable=False)
    subject = Column(String(255), nullable=True)
    message = Column(Text, nullable=False)
    status = Column(CommStatusEnum, nullable=False)
    trigger = Column(TriggerEnum, nullable=False)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=now_utc, index=True)


class NotificationOutbox(Base):
    __tablename__ = 'notification_outbox'
    id = Column(Integer, primary_key=True)
    appeal_id = Column(Integer, ForeignKey('appeals.id'), nullable=False)
    trigger_type = Column(AppealStatusEnum, nullable=False)
    payload = Column(JSON, default=dict)
    attempts = Column(Integer, default=0)
    last_error = Column(Text, nullable=True)
    status = Column(OutboxStatusEnum, default='pending', index=True)
    created_at = Column(DateTime, default=now_utc)
    updated_at = Column(DateTime, default=now_utc, onupdate=now_utc)
