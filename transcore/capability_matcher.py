"""
Engine selection: which registered backend can serve a resource for a renderer
"""

import logging
from typing import List, Optional

from .engine_registry import EngineRegistry
from .models import EngineDescriptor, MediaInfo, RendererCapabilities, ResourceDescriptor

LOGGER = logging.getLogger(__name__)


def effective_resource(resource: ResourceDescriptor, media: Optional[MediaInfo]) -> ResourceDescriptor:
    """Fill identifiers the resource lacks from probed media info"""
    if media is None:
        return resource
    updates = {}
    if resource.container is None and media.container:
        updates['container'] = media.container.lower()
    if resource.video_codec is None and media.video_codec:
        updates['video_codec'] = media.video_codec.lower()
    if resource.audio_codec is None and media.audio_codecs:
        updates['audio_codec'] = media.audio_codecs[0].lower()
    return resource.model_copy(update=updates) if updates else resource


def is_format_compatible(registry: EngineRegistry, engine: EngineDescriptor,
                         resource: ResourceDescriptor) -> bool:
    if engine.kind != resource.kind:
        return False
    profile = registry.profile_for(engine)
    return profile.accepts(resource, registry.executable_info(engine.id), registry.web_filters)


def is_renderer_compatible(registry: EngineRegistry, engine: EngineDescriptor,
                           renderer: RendererCapabilities) -> bool:
    return registry.profile_for(engine).accepts_renderer(renderer)


def compatible_engines(registry: EngineRegistry, resource: ResourceDescriptor,
                       media: Optional[MediaInfo], renderer: RendererCapabilities) -> List[EngineDescriptor]:
    """All usable engines for the request, in registry preference order"""
    resource = effective_resource(resource, media)
    candidates = []
    for engine in registry.engines(only_enabled=True):
        if not is_format_compatible(registry, engine, resource):
            continue
        if not is_renderer_compatible(registry, engine, renderer):
            LOGGER.debug("%s output is not accepted by %s", engine.id, renderer.name)
            continue
        feature = registry.profile_for(engine).required_feature(resource)
        if not registry.is_available(engine.id, feature):
            LOGGER.debug("%s is unavailable: %s", engine.id, registry.error_for(engine.id, feature))
            continue
        candidates.append(engine)
    return candidates


def select_engine(registry: EngineRegistry, resource: ResourceDescriptor,
                  media: Optional[MediaInfo], renderer: RendererCapabilities) -> Optional[EngineDescriptor]:
    """First compatible engine, or None when nothing can play the resource"""
    candidates = compatible_engines(registry, resource, media, renderer)
    if not candidates:
        LOGGER.info("No transcoding engine can handle %s for %s", resource.locator, renderer.name)
        return None
    LOGGER.debug("Selected %s for %s", candidates[0].id, resource.locator)
    return candidates[0]
