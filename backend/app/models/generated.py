from sqlalchemy import Column, ForeignKey, Integer, Table, Text, UniqueConstraint, text
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()
metadata = Base.metadata


class Users(Base):
    __tablename__ = 'users'

    name = Column(Text, nullable=False)
    id = Column(Integer, primary_key=True)
    email = Column(Text, unique=True)
    telegram_id = Column(Integer, unique=True)
    whatsapp_phone = Column(Text)
    created_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))

    appointments = relationship('Appointments', back_populates='user')


class ServiceCategories(Base):
    __tablename__ = 'service_categories'

    name = Column(Text, nullable=False)
    id = Column(Integer, primary_key=True)
    sort_order = Column(Integer, nullable=False, server_default=text('0'))

    services = relationship('Services', back_populates='category')


class Services(Base):
    __tablename__ = 'services'

    name = Column(Text, nullable=False)
    duration_min = Column(Integer, nullable=False)
    price = Column(Integer, nullable=False, server_default=text('0'))  # minor units
    is_active = Column(Integer, nullable=False, server_default=text('1'))
    id = Column(Integer, primary_key=True)
    category_id = Column(ForeignKey('service_categories.id', ondelete='SET NULL'))
    description = Column(Text)

    category = relationship('ServiceCategories', back_populates='services')
    stylists = relationship('Stylists', secondary='stylist_services', back_populates='services')


class Stylists(Base):
    __tablename__ = 'stylists'

    name = Column(Text, nullable=False)
    is_active = Column(Integer, nullable=False, server_default=text('1'))
    id = Column(Integer, primary_key=True)
    email = Column(Text)
    # JSON weekday overrides: {"mon": {"start": "09:00", "end": "17:00"}, "sun": null}
    work_schedule = Column(Text)
    created_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))

    services = relationship('Services', secondary='stylist_services', back_populates='stylists')
    appointments = relationship('Appointments', back_populates='stylist')
    blocked_periods = relationship('BlockedPeriods', back_populates='stylist')
    integration = relationship('StylistIntegrations', back_populates='stylist', uselist=False)


t_stylist_services = Table(
    'stylist_services', metadata,
    Column('stylist_id', ForeignKey('stylists.id', ondelete='CASCADE'), primary_key=True),
    Column('service_id', ForeignKey('services.id', ondelete='CASCADE'), primary_key=True),
)


class BusinessHours(Base):
    __tablename__ = 'business_hours'

    weekday = Column(Integer, primary_key=True)  # 0 = Monday, 6 = Sunday
    is_open = Column(Integer, nullable=False, server_default=text('1'))
    open_time = Column(Text, nullable=False, server_default=text("'09:00'"))
    close_time = Column(Text, nullable=False, server_default=text("'18:00'"))


class BlockedPeriods(Base):
    __tablename__ = 'blocked_periods'

    date_start = Column(Text, nullable=False)
    date_end = Column(Text, nullable=False)
    id = Column(Integer, primary_key=True)
    stylist_id = Column(ForeignKey('stylists.id', ondelete='CASCADE'))  # NULL = salon-wide
    time_start = Column(Text)  # NULL = whole day
    time_end = Column(Text)
    reason = Column(Text)
    created_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))

    stylist = relationship('Stylists', back_populates='blocked_periods')


t_appointment_services = Table(
    'appointment_services', metadata,
    Column('appointment_id', ForeignKey('appointments.id', ondelete='CASCADE'), primary_key=True),
    Column('service_id', ForeignKey('services.id'), primary_key=True),
)


class Appointments(Base):
    __tablename__ = 'appointments'

    date = Column(Text, nullable=False)
    time = Column(Text, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    total_price = Column(Integer, nullable=False, server_default=text('0'))
    customer_name = Column(Text, nullable=False)
    customer_email = Column(Text, nullable=False)
    status = Column(Text, nullable=False, server_default=text("'SCHEDULED'"))
    source = Column(Text, nullable=False, server_default=text("'web'"))
    reminder_sent = Column(Integer, nullable=False, server_default=text('0'))
    created_at = Column(Text, nullable=False, server_default=text('CURRENT_TIMESTAMP'))
    updated_at = Column(Text, nullable=False, server_default=text('CURRENT_TIMESTAMP'))
    id = Column(Integer, primary_key=True)
    stylist_id = Column(ForeignKey('stylists.id', ondelete='SET NULL'))
    user_id = Column(ForeignKey('users.id', ondelete='SET NULL'))
    calendar_event_id = Column(Text)
    reminder_sent_at = Column(Text)
    cancel_reason = Column(Text)

    stylist = relationship('Stylists', back_populates='appointments')
    user = relationship('Users', back_populates='appointments')
    services = relationship('Services', secondary='appointment_services')
    deposit = relationship('Deposits', back_populates='appointment', uselist=False)


class Deposits(Base):
    __tablename__ = 'deposits'

    appointment_id = Column(ForeignKey('appointments.id', ondelete='CASCADE'), nullable=False, unique=True)
    amount = Column(Integer, nullable=False)  # minor units
    currency = Column(Text, nullable=False, server_default=text("'sgd'"))
    status = Column(Text, nullable=False, server_default=text("'PENDING'"))
    expires_at = Column(Text, nullable=False)
    created_at = Column(Text, nullable=False, server_default=text('CURRENT_TIMESTAMP'))
    updated_at = Column(Text, nullable=False, server_default=text('CURRENT_TIMESTAMP'))
    id = Column(Integer, primary_key=True)
    checkout_session_id = Column(Text, unique=True)
    payment_intent_id = Column(Text)
    payment_url = Column(Text)
    paid_at = Column(Text)

    appointment = relationship('Appointments', back_populates='deposit')


class AdminSettings(Base):
    __tablename__ = 'admin_settings'

    id = Column(Integer, primary_key=True)
    deposit_enabled = Column(Integer, nullable=False, server_default=text('1'))
    deposit_percentage = Column(Integer, nullable=False, server_default=text('15'))
    deposit_trust_threshold = Column(Integer, nullable=False, server_default=text('1'))
    updated_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))


class StylistIntegrations(Base):
    __tablename__ = 'stylist_integrations'
    __table_args__ = (
        UniqueConstraint('stylist_id', 'provider'),
    )

    id = Column(Integer, primary_key=True)
    stylist_id = Column(ForeignKey('stylists.id', ondelete='CASCADE'), nullable=False)
    provider = Column(Text, nullable=False, server_default=text("'google_calendar'"))
    access_token = Column(Text)
    refresh_token = Column(Text)
    token_expires_at = Column(Text)
    calendar_id = Column(Text, server_default=text("'primary'"))
    sync_enabled = Column(Integer, server_default=text('1'))
    needs_reconnect = Column(Integer, nullable=False, server_default=text('0'))
    last_sync_at = Column(Text)
    created_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))
    updated_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))

    stylist = relationship('Stylists', back_populates='integration')
