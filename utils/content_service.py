"""
Content Writes
Scene, slide, theme, scene-assignment and emergency mutations. Each write
publishes a content change so dependent screens are flagged for refresh in
the same transaction.
"""
import logging

from models import (db, BrandTheme, CONTENT_TYPES, Device, Layout, MediaAsset, Playlist,
                    Scene, SceneSlide, ScreenGroup, Tenant, utcnow)
from utils.content_events import publish_scene_changed, publish_tenant_changed
from utils.errors import InvalidInput, NotFound
from utils.liveness import flag_tenant_devices, mark_device_for_refresh
from utils.permissions import ensure_can_write, ensure_owns

logger = logging.getLogger(__name__)

# Scene fields whose change is visible on screen
SCENE_DISPLAY_FIELDS = ('name', 'is_active', 'settings', 'layout_id', 'primary_playlist_id')
SCENE_EDITABLE_FIELDS = SCENE_DISPLAY_FIELDS + ('secondary_playlist_id', 'language_code')

THEME_FIELDS = ('name', 'primary_color', 'secondary_color', 'logo_url', 'font_family', 'is_active')


def _get_owned(caller, model, object_id, label):
    obj = db.session.get(model, object_id)
    if obj is None:
        raise NotFound(f'{label} not found')
    ensure_owns(caller, obj.tenant_id, label.lower())
    ensure_can_write(caller)
    return obj


# ============================================================================
# SCENES & SLIDES
# ============================================================================

def update_scene(caller, scene_id, changes) -> Scene:
    """Apply scene edits; screens are flagged only when a displayed field changed"""
    scene = _get_owned(caller, Scene, scene_id, 'Scene')

    unknown = set(changes) - set(SCENE_EDITABLE_FIELDS)
    if unknown:
        raise InvalidInput(f'Unknown scene field(s): {", ".join(sorted(unknown))}')
    if 'name' in changes and not changes['name']:
        raise InvalidInput('Name is required')
    if changes.get('layout_id') is not None:
        _get_owned(caller, Layout, changes['layout_id'], 'Layout')
    for key in ('primary_playlist_id', 'secondary_playlist_id'):
        if changes.get(key) is not None:
            _get_owned(caller, Playlist, changes[key], 'Playlist')

    display_changed = any(
        key in changes and changes[key] != getattr(scene, key)
        for key in SCENE_DISPLAY_FIELDS
    )
    for key, value in changes.items():
        setattr(scene, key, value)

    if display_changed:
        publish_scene_changed(update_scene, scene.id)
    db.session.commit()
    return scene


def save_slide(caller, scene_id, data, slide_id=None) -> SceneSlide:
    """Create or update a slide of a scene"""
    scene = _get_owned(caller, Scene, scene_id, 'Scene')

    if slide_id is not None:
        slide = db.session.get(SceneSlide, slide_id)
        if slide is None or slide.scene_id != scene.id:
            raise NotFound('Slide not found')
    else:
        slide = SceneSlide(scene_id=scene.id)
        db.session.add(slide)

    if 'position' in data:
        slide.position = int(data['position'])
    if 'title' in data:
        slide.title = data['title']
    if 'payload' in data:
        if data['payload'] is not None and not isinstance(data['payload'], dict):
            raise InvalidInput('payload must be an object')
        slide.payload = data['payload']

    publish_scene_changed(save_slide, scene.id)
    db.session.commit()
    return slide


def delete_slide(caller, slide_id):
    slide = db.session.get(SceneSlide, slide_id)
    if slide is None:
        raise NotFound('Slide not found')
    scene = _get_owned(caller, Scene, slide.scene_id, 'Scene')

    db.session.delete(slide)
    publish_scene_changed(delete_slide, scene.id)
    db.session.commit()


def save_brand_theme(caller, data, theme_id=None) -> BrandTheme:
    """Create or update a theme; an active theme refreshes every scene screen of the tenant"""
    ensure_can_write(caller)
    if theme_id is not None:
        theme = _get_owned(caller, BrandTheme, theme_id, 'Theme')
    else:
        if not data.get('name'):
            raise InvalidInput('Name is required')
        theme = BrandTheme(tenant_id=caller.tenant_id)
        db.session.add(theme)

    for key in THEME_FIELDS:
        if key in data:
            setattr(theme, key, data[key])

    if theme.is_active:
        # One active theme per tenant
        db.session.flush()
        BrandTheme.query.filter(
            BrandTheme.tenant_id == theme.tenant_id,
            BrandTheme.id != theme.id,
            BrandTheme.is_active.is_(True)
        ).update({'is_active': False}, synchronize_session='fetch')

    publish_tenant_changed(save_brand_theme, theme.tenant_id)
    db.session.commit()
    return theme


def set_active_scene(caller, device_id, scene_id) -> Device:
    """Point a screen at a scene, or clear it with None"""
    device = _get_owned(caller, Device, device_id, 'Device')
    if scene_id is not None:
        _get_owned(caller, Scene, scene_id, 'Scene')

    device.active_scene_id = scene_id
    mark_device_for_refresh(device)
    db.session.commit()
    return device


def set_group_scene(caller, group_id, scene_id) -> ScreenGroup:
    group = _get_owned(caller, ScreenGroup, group_id, 'Group')
    if scene_id is not None:
        _get_owned(caller, Scene, scene_id, 'Scene')

    group.active_scene_id = scene_id
    for device in group.devices:
        mark_device_for_refresh(device)
    db.session.commit()
    return group


# ============================================================================
# EMERGENCY OVERRIDE
# ============================================================================

def start_emergency(caller, content_type, content_id, duration_minutes=None, now=None) -> Tenant:
    """Put every screen of the caller's tenant on emergency content"""
    ensure_can_write(caller)
    if content_type not in CONTENT_TYPES:
        raise InvalidInput(f'Invalid content_type: {content_type}')
    if duration_minutes is not None and int(duration_minutes) <= 0:
        raise InvalidInput('duration_minutes must be positive')

    model = {'playlist': Playlist, 'layout': Layout, 'media': MediaAsset}[content_type]
    _get_owned(caller, model, content_id, content_type.title())

    tenant = db.session.get(Tenant, caller.tenant_id)
    if tenant is None:
        raise NotFound('Tenant not found')

    tenant.emergency_content_type = content_type
    tenant.emergency_content_id = content_id
    tenant.emergency_started_at = now or utcnow()
    tenant.emergency_duration_minutes = int(duration_minutes) if duration_minutes is not None else None
    flagged = flag_tenant_devices(tenant.id)
    db.session.commit()

    logger.warning(f'Emergency started for tenant {tenant.id}: {content_type} {content_id} ({flagged} screens)')
    from socketio_events import broadcast_emergency
    broadcast_emergency(tenant.id, active=True, content_type=content_type, content_id=content_id)
    return tenant


def _reset_emergency(tenant: Tenant):
    tenant.emergency_content_type = None
    tenant.emergency_content_id = None
    tenant.emergency_started_at = None
    tenant.emergency_duration_minutes = None
    flag_tenant_devices(tenant.id)


def clear_emergency(caller) -> Tenant:
    ensure_can_write(caller)
    tenant = db.session.get(Tenant, caller.tenant_id)
    if tenant is None:
        raise NotFound('Tenant not found')

    _reset_emergency(tenant)
    db.session.commit()

    logger.warning(f'Emergency cleared for tenant {tenant.id}')
    from socketio_events import broadcast_emergency
    broadcast_emergency(tenant.id, active=False)
    return tenant


def clear_expired_emergencies(now=None) -> int:
    """Sweep: drop emergencies whose duration has elapsed"""
    now = now or utcnow()
    tenants = Tenant.query.filter(
        Tenant.emergency_content_id.isnot(None),
        Tenant.emergency_duration_minutes.isnot(None)
    ).all()

    cleared = 0
    for tenant in tenants:
        if not tenant.has_active_emergency(now):
            _reset_emergency(tenant)
            cleared += 1
    db.session.commit()

    if cleared:
        logger.info(f'Cleared {cleared} expired emergency override(s)')
    return cleared
