"""
SignageCore Database Models
SQLAlchemy ORM models for tenants, screens, content, campaigns, schedules and commands
"""
from datetime import datetime, timedelta, timezone
from flask_sqlalchemy import SQLAlchemy
from werkzeug.security import generate_password_hash, check_password_hash
import enum

db = SQLAlchemy()


def utcnow():
    """Naive UTC timestamp used for every stored datetime"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class UserRole(enum.Enum):
    """Caller role enumeration, resolved upstream and passed in request headers"""
    ADMIN = 'admin'        # Full access within the tenant
    OPERATOR = 'operator'  # Manage content, screens and commands
    VIEWER = 'viewer'      # Read-only access


CONTENT_TYPES = ('playlist', 'layout', 'media')
SCHEDULE_CONTENT_TYPES = CONTENT_TYPES + ('scene',)


# ============================================================================
# TENANCY
# ============================================================================

class Tenant(db.Model):
    """Owning organisation; carries the tenant-wide emergency override"""
    __tablename__ = 'tenants'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    display_language = db.Column(db.String(10), nullable=True)
    master_pin_hash = db.Column(db.String(255), nullable=True)  # Kiosk master PIN
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    # Emergency override (tenant-wide)
    emergency_content_type = db.Column(db.String(20), nullable=True)  # playlist, layout, media
    emergency_content_id = db.Column(db.Integer, nullable=True)
    emergency_started_at = db.Column(db.DateTime, nullable=True)
    emergency_duration_minutes = db.Column(db.Integer, nullable=True)  # NULL = until cleared

    devices = db.relationship('Device', backref='tenant', lazy='dynamic', cascade='all, delete-orphan')

    def emergency_expires_at(self):
        """Expiry of the current emergency, or None when open-ended"""
        if self.emergency_started_at is None or self.emergency_duration_minutes is None:
            return None
        return self.emergency_started_at + timedelta(minutes=self.emergency_duration_minutes)

    def has_active_emergency(self, now):
        """Emergency is active while set and not past started_at + duration"""
        if self.emergency_content_id is None or self.emergency_content_type is None:
            return False
        if self.emergency_duration_minutes is not None and self.emergency_started_at is None:
            # a timed emergency without a start cannot be dated; treat it as over
            return False
        expires_at = self.emergency_expires_at()
        return expires_at is None or now < expires_at

    def set_master_pin(self, pin):
        self.master_pin_hash = generate_password_hash(pin) if pin else None

    def check_master_pin(self, pin):
        return bool(self.master_pin_hash) and check_password_hash(self.master_pin_hash, pin)

    def __repr__(self):
        return f'<Tenant {self.name}>'


class Location(db.Model):
    """Physical site grouping screens"""
    __tablename__ = 'locations'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    timezone = db.Column(db.String(64), nullable=True)  # IANA name, e.g. Europe/Berlin

    def __repr__(self):
        return f'<Location {self.name}>'


class ScreenGroup(db.Model):
    """Group of screens sharing a scene and display language"""
    __tablename__ = 'screen_groups'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey('locations.id', ondelete='SET NULL'), nullable=True)
    name = db.Column(db.String(200), nullable=False)
    active_scene_id = db.Column(db.Integer, db.ForeignKey('scenes.id', ondelete='SET NULL'), nullable=True)
    assigned_schedule_id = db.Column(db.Integer, db.ForeignKey('schedules.id', ondelete='SET NULL'), nullable=True)
    display_language = db.Column(db.String(10), nullable=True)

    location = db.relationship('Location')
    active_scene = db.relationship('Scene', foreign_keys=[active_scene_id])

    def __repr__(self):
        return f'<ScreenGroup {self.name}>'


# ============================================================================
# DEVICES
# ============================================================================

class Device(db.Model):
    """Registered screen / player"""
    __tablename__ = 'devices'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey('locations.id', ondelete='SET NULL'), nullable=True)
    group_id = db.Column(db.Integer, db.ForeignKey('screen_groups.id', ondelete='SET NULL'), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)  # False once retired
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    # Pairing
    otp_code = db.Column(db.String(12), nullable=True, index=True)
    otp_expires_at = db.Column(db.DateTime, nullable=True)
    api_key = db.Column(db.String(64), unique=True, nullable=True)
    is_paired = db.Column(db.Boolean, default=False, nullable=False)
    paired_at = db.Column(db.DateTime, nullable=True)

    # Liveness
    last_seen = db.Column(db.DateTime, nullable=True)
    is_online = db.Column(db.Boolean, default=False, nullable=False)
    app_version = db.Column(db.String(50), nullable=True)
    os_version = db.Column(db.String(50), nullable=True)

    # Platform metadata (reported at pairing)
    platform = db.Column(db.String(50), nullable=True)
    model = db.Column(db.String(100), nullable=True)
    brand = db.Column(db.String(100), nullable=True)
    screen_width = db.Column(db.Integer, nullable=True)
    screen_height = db.Column(db.Integer, nullable=True)
    timezone = db.Column(db.String(64), nullable=True)
    locale = db.Column(db.String(20), nullable=True)
    display_language = db.Column(db.String(10), nullable=True)

    # Content assignment stack
    active_scene_id = db.Column(db.Integer, db.ForeignKey('scenes.id', ondelete='SET NULL'), nullable=True)
    assigned_schedule_id = db.Column(db.Integer, db.ForeignKey('schedules.id', ondelete='SET NULL'), nullable=True)
    assigned_layout_id = db.Column(db.Integer, db.ForeignKey('layouts.id', ondelete='SET NULL'), nullable=True)
    assigned_playlist_id = db.Column(db.Integer, db.ForeignKey('playlists.id', ondelete='SET NULL'), nullable=True)

    # Change detection
    needs_refresh = db.Column(db.Boolean, default=False, nullable=False)
    last_config_hash = db.Column(db.String(64), nullable=True)
    last_refresh_at = db.Column(db.DateTime, nullable=True)

    # Kiosk lockdown
    kiosk_mode_enabled = db.Column(db.Boolean, default=False, nullable=False)
    kiosk_pin_hash = db.Column(db.String(255), nullable=True)

    # Relationships
    location = db.relationship('Location')
    group = db.relationship('ScreenGroup', backref='devices', foreign_keys=[group_id])
    active_scene = db.relationship('Scene', foreign_keys=[active_scene_id])
    assigned_schedule = db.relationship('Schedule', foreign_keys=[assigned_schedule_id])
    assigned_layout = db.relationship('Layout', foreign_keys=[assigned_layout_id])
    assigned_playlist = db.relationship('Playlist', foreign_keys=[assigned_playlist_id])

    def set_kiosk_pin(self, pin):
        self.kiosk_pin_hash = generate_password_hash(pin) if pin else None

    def check_kiosk_pin(self, pin):
        return bool(self.kiosk_pin_hash) and check_password_hash(self.kiosk_pin_hash, pin)

    @property
    def local_timezone(self):
        """Device timezone, falling back to its location; None when neither is set"""
        if self.timezone:
            return self.timezone
        if self.location is not None and self.location.timezone:
            return self.location.timezone
        return None

    @property
    def effective_timezone(self):
        return self.local_timezone or 'UTC'

    @property
    def liveness_state(self):
        """unknown (never seen), online or offline"""
        if self.last_seen is None:
            return 'unknown'
        return 'online' if self.is_online else 'offline'

    def __repr__(self):
        return f'<Device {self.name} ({self.id})>'


# ============================================================================
# MEDIA, PLAYLISTS & LAYOUTS
# ============================================================================

class MediaAsset(db.Model):
    """Media item metadata; binaries live in an external store"""
    __tablename__ = 'media_assets'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    media_type = db.Column(db.String(20), default='image', nullable=False)  # image, video, web
    url = db.Column(db.String(1024), nullable=False)
    thumbnail_url = db.Column(db.String(1024), nullable=True)
    duration = db.Column(db.Integer, nullable=True)  # Duration in seconds

    def __repr__(self):
        return f'<MediaAsset {self.name}>'


class Playlist(db.Model):
    """Ordered collection of media items"""
    __tablename__ = 'playlists'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    default_duration = db.Column(db.Integer, nullable=True)  # seconds
    transition_effect = db.Column(db.String(20), default='fade', nullable=False)
    shuffle = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    items = db.relationship('PlaylistItem', backref='playlist', lazy='dynamic',
                            cascade='all, delete-orphan', order_by='PlaylistItem.position')

    def __repr__(self):
        return f'<Playlist {self.name}>'


class PlaylistItem(db.Model):
    """Media entry in a playlist"""
    __tablename__ = 'playlist_items'

    id = db.Column(db.Integer, primary_key=True)
    playlist_id = db.Column(db.Integer, db.ForeignKey('playlists.id', ondelete='CASCADE'), nullable=False, index=True)
    media_id = db.Column(db.Integer, db.ForeignKey('media_assets.id', ondelete='CASCADE'), nullable=False)
    position = db.Column(db.Integer, default=0, nullable=False)
    duration = db.Column(db.Integer, nullable=True)  # Per-item override in seconds

    media = db.relationship('MediaAsset')

    def __repr__(self):
        return f'<PlaylistItem {self.playlist_id}:{self.position}>'


class Layout(db.Model):
    """Multi-zone screen layout"""
    __tablename__ = 'layouts'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    width = db.Column(db.Integer, default=1920, nullable=False)
    height = db.Column(db.Integer, default=1080, nullable=False)
    background_color = db.Column(db.String(20), default='#000000')

    zones = db.relationship('LayoutZone', backref='layout', lazy='dynamic',
                            cascade='all, delete-orphan', order_by='LayoutZone.z_index')

    def __repr__(self):
        return f'<Layout {self.name}>'


class LayoutZone(db.Model):
    """Rectangular region of a layout showing a playlist or a single media item"""
    __tablename__ = 'layout_zones'

    id = db.Column(db.Integer, primary_key=True)
    layout_id = db.Column(db.Integer, db.ForeignKey('layouts.id', ondelete='CASCADE'), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    x = db.Column(db.Integer, default=0, nullable=False)
    y = db.Column(db.Integer, default=0, nullable=False)
    width = db.Column(db.Integer, nullable=False)
    height = db.Column(db.Integer, nullable=False)
    z_index = db.Column(db.Integer, default=0, nullable=False)
    playlist_id = db.Column(db.Integer, db.ForeignKey('playlists.id', ondelete='SET NULL'), nullable=True)
    media_id = db.Column(db.Integer, db.ForeignKey('media_assets.id', ondelete='SET NULL'), nullable=True)

    playlist = db.relationship('Playlist')
    media = db.relationship('MediaAsset')


# ============================================================================
# SCENES & THEMES
# ============================================================================

class SceneLanguageGroup(db.Model):
    """Set of scenes that are language variants of one another"""
    __tablename__ = 'scene_language_groups'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    default_language = db.Column(db.String(10), default='en', nullable=False)

    scenes = db.relationship('Scene', backref='language_group', lazy='dynamic')


class Scene(db.Model):
    """Bundle of layout, playlists and settings"""
    __tablename__ = 'scenes'
    __table_args__ = (
        db.UniqueConstraint('language_group_id', 'language_code', name='uq_scene_language_variant'),
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    layout_id = db.Column(db.Integer, db.ForeignKey('layouts.id', ondelete='SET NULL'), nullable=True)
    primary_playlist_id = db.Column(db.Integer, db.ForeignKey('playlists.id', ondelete='SET NULL'), nullable=True)
    secondary_playlist_id = db.Column(db.Integer, db.ForeignKey('playlists.id', ondelete='SET NULL'), nullable=True)
    settings = db.Column(db.JSON, nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    language_group_id = db.Column(db.Integer, db.ForeignKey('scene_language_groups.id', ondelete='SET NULL'),
                                  nullable=True)
    language_code = db.Column(db.String(10), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    layout = db.relationship('Layout', foreign_keys=[layout_id])
    primary_playlist = db.relationship('Playlist', foreign_keys=[primary_playlist_id])
    secondary_playlist = db.relationship('Playlist', foreign_keys=[secondary_playlist_id])
    slides = db.relationship('SceneSlide', backref='scene', lazy='dynamic',
                             cascade='all, delete-orphan', order_by='SceneSlide.position')

    def __repr__(self):
        return f'<Scene {self.name} ({self.language_code or "-"})>'


class SceneSlide(db.Model):
    """Slide belonging to a scene"""
    __tablename__ = 'scene_slides'

    id = db.Column(db.Integer, primary_key=True)
    scene_id = db.Column(db.Integer, db.ForeignKey('scenes.id', ondelete='CASCADE'), nullable=False, index=True)
    position = db.Column(db.Integer, default=0, nullable=False)
    title = db.Column(db.String(200), nullable=True)
    payload = db.Column(db.JSON, nullable=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)


class BrandTheme(db.Model):
    """Tenant branding applied to scenes"""
    __tablename__ = 'brand_themes'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    primary_color = db.Column(db.String(20), nullable=True)
    secondary_color = db.Column(db.String(20), nullable=True)
    logo_url = db.Column(db.String(1024), nullable=True)
    font_family = db.Column(db.String(100), nullable=True)
    is_active = db.Column(db.Boolean, default=False, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)


# ============================================================================
# CAMPAIGNS
# ============================================================================

class Campaign(db.Model):
    """Time-boxed, targeted, prioritised content override"""
    __tablename__ = 'campaigns'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), default='draft', nullable=False)  # draft, scheduled, active, completed, paused
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    start_at = db.Column(db.DateTime, nullable=True)
    end_at = db.Column(db.DateTime, nullable=True)
    priority = db.Column(db.Integer, default=100, nullable=False)
    rotation_mode = db.Column(db.String(20), default='weight', nullable=False)  # weight, percentage, sequence, random
    max_plays_per_hour = db.Column(db.Integer, nullable=True)
    max_plays_per_day = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    targets = db.relationship('CampaignTarget', backref='campaign', lazy='dynamic', cascade='all, delete-orphan')
    contents = db.relationship('CampaignContent', backref='campaign', lazy='dynamic',
                               cascade='all, delete-orphan', order_by='CampaignContent.position')

    def is_live(self, now):
        """Active flag set and now within [start_at, end_at]"""
        if not self.is_active:
            return False
        if self.start_at is not None and now < self.start_at:
            return False
        if self.end_at is not None and now > self.end_at:
            return False
        return True

    def __repr__(self):
        return f'<Campaign {self.name} (priority {self.priority})>'


class CampaignTarget(db.Model):
    """Screen, screen group, location or all-screens target of a campaign"""
    __tablename__ = 'campaign_targets'

    id = db.Column(db.Integer, primary_key=True)
    campaign_id = db.Column(db.Integer, db.ForeignKey('campaigns.id', ondelete='CASCADE'), nullable=False, index=True)
    target_type = db.Column(db.String(20), nullable=False)  # screen, screen_group, location, all
    target_id = db.Column(db.Integer, nullable=True)  # NULL for 'all'


class CampaignContent(db.Model):
    """Content item rotated within a campaign"""
    __tablename__ = 'campaign_contents'

    id = db.Column(db.Integer, primary_key=True)
    campaign_id = db.Column(db.Integer, db.ForeignKey('campaigns.id', ondelete='CASCADE'), nullable=False, index=True)
    content_type = db.Column(db.String(20), nullable=False)  # playlist, layout, media
    content_id = db.Column(db.Integer, nullable=False)
    weight = db.Column(db.Integer, default=1, nullable=True)
    rotation_percentage = db.Column(db.Integer, nullable=True)
    position = db.Column(db.Integer, default=0, nullable=False)
    max_plays_per_hour = db.Column(db.Integer, nullable=True)
    max_plays_per_day = db.Column(db.Integer, nullable=True)


# ============================================================================
# SCHEDULING
# ============================================================================

class Schedule(db.Model):
    """Named schedule owning ordered time-window entries"""
    __tablename__ = 'schedules'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    timezone = db.Column(db.String(64), nullable=True)  # used when the device and its location have none
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    entries = db.relationship('ScheduleEntry', backref='schedule', lazy='dynamic', cascade='all, delete-orphan')

    def __repr__(self):
        return f'<Schedule {self.name}>'


class ScheduleEntry(db.Model):
    """Recurring daily window mapping a target scope to content"""
    __tablename__ = 'schedule_entries'

    id = db.Column(db.Integer, primary_key=True)
    schedule_id = db.Column(db.Integer, db.ForeignKey('schedules.id', ondelete='CASCADE'), nullable=False, index=True)

    # Target scope
    target_type = db.Column(db.String(20), default='all', nullable=False)  # screen, screen_group, all
    target_id = db.Column(db.Integer, nullable=True)

    # Content reference
    content_type = db.Column(db.String(20), nullable=False)  # playlist, layout, media, scene
    content_id = db.Column(db.Integer, nullable=False)

    # Time scheduling, evaluated in device-local time
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)

    # Day of week selection [0=Monday, 1=Tuesday, ..., 6=Sunday]
    days_of_week = db.Column(db.String(20), nullable=True)  # e.g., "0,1,2,3,4" for Mon-Fri; NULL = every day

    # Date range (optional)
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)

    priority = db.Column(db.Integer, default=0, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    @property
    def days_list(self):
        """Get list of day numbers"""
        if not self.days_of_week:
            return list(range(7))
        return [int(d) for d in self.days_of_week.split(',') if d.strip()]

    def __repr__(self):
        return f'<ScheduleEntry {self.start_time}-{self.end_time} {self.content_type}:{self.content_id}>'


# ============================================================================
# REMOTE COMMANDS
# ============================================================================

COMMAND_TYPES = (
    'reboot', 'reload', 'reset', 'clear_cache', 'unpair', 'screenshot',
    'play_content', 'stop_content', 'set_volume', 'custom',
)

TERMINAL_COMMAND_STATUSES = ('acknowledged', 'failed', 'expired')


class DeviceCommand(db.Model):
    """Remote commands queued for devices"""
    __tablename__ = 'device_commands'

    id = db.Column(db.Integer, primary_key=True)
    device_id = db.Column(db.Integer, db.ForeignKey('devices.id', ondelete='CASCADE'), nullable=False, index=True)
    command_type = db.Column(db.String(50), nullable=False)
    payload = db.Column(db.JSON, nullable=True)
    status = db.Column(db.String(20), default='pending', nullable=False)  # pending, delivered, acknowledged, failed, expired
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
    expires_at = db.Column(db.DateTime, nullable=False)
    delivered_at = db.Column(db.DateTime, nullable=True)
    delivery_count = db.Column(db.Integer, default=0, nullable=False)
    acknowledged_at = db.Column(db.DateTime, nullable=True)
    result = db.Column(db.JSON, nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.String(64), nullable=True)

    device = db.relationship('Device', backref=db.backref('commands', lazy='dynamic', cascade='all, delete-orphan'))

    @property
    def is_pending(self):
        """Check if command is still waiting for the device"""
        return self.status in ('pending', 'delivered')

    @property
    def is_terminal(self):
        return self.status in TERMINAL_COMMAND_STATUSES

    def to_dict(self):
        return {
            'id': self.id,
            'device_id': self.device_id,
            'command_type': self.command_type,
            'payload': self.payload,
            'status': self.status,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'expires_at': self.expires_at.isoformat() if self.expires_at else None,
            'delivered_at': self.delivered_at.isoformat() if self.delivered_at else None,
            'delivery_count': self.delivery_count,
            'acknowledged_at': self.acknowledged_at.isoformat() if self.acknowledged_at else None,
            'result': self.result,
            'error_message': self.error_message,
        }

    def __repr__(self):
        return f'<DeviceCommand {self.command_type} for Device:{self.device_id} - {self.status}>'


# ============================================================================
# TELEMETRY
# ============================================================================

class TelemetryEvent(db.Model):
    """Append-only device telemetry; never updated after insert"""
    __tablename__ = 'telemetry_events'

    id = db.Column(db.Integer, primary_key=True)
    device_id = db.Column(db.Integer, db.ForeignKey('devices.id', ondelete='CASCADE'), nullable=False, index=True)
    event_type = db.Column(db.String(50), nullable=False, index=True)
    data = db.Column(db.JSON, nullable=True)
    app_version = db.Column(db.String(50), nullable=True)
    os_version = db.Column(db.String(50), nullable=True)
    network_type = db.Column(db.String(20), nullable=True)
    recorded_at = db.Column(db.DateTime, nullable=False)  # Device clock
    received_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)

    # Campaign attribution, used for frequency caps
    campaign_id = db.Column(db.Integer, db.ForeignKey('campaigns.id', ondelete='SET NULL'), nullable=True, index=True)
    campaign_content_id = db.Column(db.Integer, db.ForeignKey('campaign_contents.id', ondelete='SET NULL'),
                                    nullable=True)

    def __repr__(self):
        return f'<TelemetryEvent {self.event_type} Device:{self.device_id}>'
