"""
Shared command pipeline: executable, globals, seek, input, output shaping,
custom options, sink
"""

import logging
import os
import shlex
import sys
from typing import List, Optional

from .backend_profiles import CommandContext, profile_for
from .config import EngineConfiguration
from .errors import CommandBuildError
from .models import EngineDescriptor, MediaInfo, OutputParameters, ResourceDescriptor

LOGGER = logging.getLogger(__name__)


def available_processors() -> int:
    return os.cpu_count() or 1


def thread_options(config: EngineConfiguration) -> List[str]:
    """Let the backend pick its thread count only when it would use every core anyway"""
    if config.multithreading and config.thread_count == available_processors():
        return []
    return ['-threads', str(config.thread_count)]


def make_context(engine: EngineDescriptor, resource: ResourceDescriptor, media: MediaInfo,
                 params: OutputParameters, config: EngineConfiguration, registry=None,
                 platform: Optional[str] = None) -> CommandContext:
    executable_info = registry.executable_info(engine.id) if registry is not None else None
    web_filters = registry.web_filters if registry is not None else None
    if platform is None:
        platform = registry.platform if registry is not None else sys.platform
    return CommandContext(
        engine=engine,
        resource=resource,
        media=media,
        params=params,
        config=config,
        executable_info=executable_info,
        web_filters=web_filters,
        platform=platform,
        thread_args=thread_options(config),
    )


def assemble(ctx: CommandContext) -> List[str]:
    """Run the profile hooks in their fixed order"""
    engine = ctx.engine
    profile = profile_for(engine.id)

    executable = engine.resolve_executable(ctx.config)
    if not executable:
        raise CommandBuildError(f'no executable configured for {engine.id}')

    custom = profile.custom_options(ctx)

    head = [executable] + profile.global_options(ctx)
    custom.transfer_globals(head)
    custom.transfer_input_file_options(head)

    seek = []
    if engine.time_seekable:
        seek = profile.seek_options(ctx)
    elif ctx.params.time_seek > 0:
        LOGGER.debug("%s cannot seek, ignoring offset %s", engine.id, ctx.params.time_seek)

    locator = profile.input_locator(ctx)
    inputs = profile.input_args(ctx, locator)
    if not inputs:
        raise CommandBuildError(f'{engine.id} produced no input arguments')
    if seek and ctx.resource.is_screen_capture:
        raise CommandBuildError('seeking is not possible on a screen capture')

    outputs = profile.output_options(ctx)
    extra = custom.transfer_all([])
    sink = profile.sink(ctx)

    cmd = head + seek + inputs + outputs + extra + sink
    bad = [arg for arg in cmd if not isinstance(arg, str)]
    if bad:
        raise CommandBuildError(f'non-string arguments in command: {bad!r}')
    return cmd


def build_command(engine: EngineDescriptor, resource: ResourceDescriptor, media: MediaInfo,
                  params: OutputParameters, config: EngineConfiguration, registry=None,
                  platform: Optional[str] = None) -> List[str]:
    """Build the argument vector for one request.

    Pure with respect to its inputs: the same arguments always give the same
    vector. Pipe endpoints are taken from params.pipe_slots, so callers
    that stream through a named pipe must place the PipeHandle there first.
    """
    ctx = make_context(engine, resource, media, params, config, registry, platform)
    cmd = assemble(ctx)
    LOGGER.debug("Built command for %s: %s", engine.id, format_command(cmd))
    return cmd


def format_command(cmd: List[str]) -> str:
    return shlex.join(cmd)
