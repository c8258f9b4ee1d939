"""
Content Change Events
Content writers publish on `content_changed`; the liveness tracker subscribes
and flags affected devices for refresh.

Scopes:
    content_changed.send(sender, scene_id=...)   devices showing that scene
    content_changed.send(sender, tenant_id=...)  every device of the tenant with a scene
"""
from blinker import Namespace

_signals = Namespace()

content_changed = _signals.signal('content-changed')


def publish_scene_changed(sender, scene_id):
    return content_changed.send(sender, scene_id=scene_id)


def publish_tenant_changed(sender, tenant_id):
    return content_changed.send(sender, tenant_id=tenant_id)
