"""
Shared fixtures: an in-memory app per test plus small model factories
"""
from datetime import datetime

import pytest

from app import create_app
from models import (db, Device, Layout, LayoutZone, MediaAsset, Playlist, PlaylistItem,
                    Scene, Schedule, ScreenGroup, Tenant, UserRole)
from utils.permissions import Caller

# Monday
NOW = datetime(2025, 1, 6, 12, 0, 0)


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def tenant(app):
    tenant = Tenant(name='Acme')
    db.session.add(tenant)
    db.session.commit()
    return tenant


@pytest.fixture
def other_tenant(app):
    tenant = Tenant(name='Globex')
    db.session.add(tenant)
    db.session.commit()
    return tenant


@pytest.fixture
def operator(tenant):
    return Caller('user-1', tenant.id, UserRole.OPERATOR)


@pytest.fixture
def admin(tenant):
    return Caller('admin-1', tenant.id, UserRole.ADMIN)


@pytest.fixture
def viewer(tenant):
    return Caller('viewer-1', tenant.id, UserRole.VIEWER)


@pytest.fixture
def make_device(tenant):
    def _make(name='Lobby', paired=False, api_key=None, tenant_id=None, **fields):
        device = Device(tenant_id=tenant_id or tenant.id, name=name, **fields)
        if paired:
            device.is_paired = True
            device.api_key = api_key or f'key-{name.lower()}-0123456789abcdef'
        db.session.add(device)
        db.session.commit()
        return device
    return _make


@pytest.fixture
def make_media(tenant):
    def _make(name='image.png', duration=None, media_type='image', tenant_id=None):
        media = MediaAsset(tenant_id=tenant_id or tenant.id, name=name, media_type=media_type,
                           url=f'https://cdn.example.com/{name}', duration=duration)
        db.session.add(media)
        db.session.commit()
        return media
    return _make


@pytest.fixture
def make_playlist(tenant):
    def _make(name='Menu', items=(), default_duration=None, tenant_id=None):
        """items: iterable of (media, duration_override) pairs, in position order"""
        playlist = Playlist(tenant_id=tenant_id or tenant.id, name=name, default_duration=default_duration)
        db.session.add(playlist)
        db.session.flush()
        for position, (media, duration) in enumerate(items):
            db.session.add(PlaylistItem(playlist_id=playlist.id, media_id=media.id,
                                        position=position, duration=duration))
        db.session.commit()
        return playlist
    return _make


@pytest.fixture
def make_layout(tenant):
    def _make(name='Split', playlist=None, media=None):
        layout = Layout(tenant_id=tenant.id, name=name)
        db.session.add(layout)
        db.session.flush()
        db.session.add(LayoutZone(layout_id=layout.id, name='main', width=1920, height=1080,
                                  playlist_id=playlist.id if playlist else None,
                                  media_id=media.id if media else None))
        db.session.commit()
        return layout
    return _make


@pytest.fixture
def make_scene(tenant):
    def _make(name='Welcome', playlist=None, layout=None, language_group=None, language_code=None,
              is_active=True):
        scene = Scene(tenant_id=tenant.id, name=name,
                      primary_playlist_id=playlist.id if playlist else None,
                      layout_id=layout.id if layout else None,
                      language_group_id=language_group.id if language_group else None,
                      language_code=language_code, is_active=is_active)
        db.session.add(scene)
        db.session.commit()
        return scene
    return _make


@pytest.fixture
def make_group(tenant):
    def _make(name='Ground floor', **fields):
        group = ScreenGroup(tenant_id=tenant.id, name=name, **fields)
        db.session.add(group)
        db.session.commit()
        return group
    return _make


@pytest.fixture
def make_schedule(tenant):
    def _make(name='Weekdays', **fields):
        schedule = Schedule(tenant_id=tenant.id, name=name, **fields)
        db.session.add(schedule)
        db.session.commit()
        return schedule
    return _make
