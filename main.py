#!/usr/bin/env python3
"""
Transcoding engine orchestration CLI

Lists the registered backends, shows which one would handle a file or URL,
prints the command it would run, and streams or extracts media through it.

Usage:
  python main.py engines [--check]
  python main.py select /path/to/movie.mkv --containers mpegts,mpegps
  python main.py build /path/to/movie.mkv --seek 30
  python main.py run http://example.com/stream --output out.mpg
  python main.py thumbnail /path/to/photo.nef --output thumb.jpg

Requires the backend executables (ffmpeg, vlc, dcraw) in PATH or configured
with --path.
"""

import argparse
import shutil
import sys
from pathlib import Path

from transcore.capability_matcher import compatible_engines
from transcore.command_builder import build_command
from transcore.config import EngineConfiguration
from transcore.engine_ids import EngineId, MediaKind
from transcore.engine_registry import EngineRegistry
from transcore.errors import TranscodeError
from transcore.file_utils import format_file_size, resource_from_locator
from transcore.models import MediaInfo, OutputParameters, RendererCapabilities
from transcore.parallel_checker import create_engine_checker
from transcore.pipe_bridge import create_pipe, unique_pipe_name
from transcore.process_supervisor import setup_signal_handlers
from transcore.rich_console import rich_output, setup_logging
from transcore.transcode_session import TranscodeSession, run_one_shot


def split_list(value):
    return [item.strip() for item in value.split(',') if item.strip()] if value else []


def parse_arguments():
    """Parse and validate command line arguments"""
    ap = argparse.ArgumentParser(description='Transcoding engine orchestration')
    ap.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    ap.add_argument('--path', action='append', default=[], metavar='ENGINE=EXE',
                    help='Alternate executable for an engine (repeatable)')
    ap.add_argument('--threads', type=int, default=None, help='Thread count passed to backends')
    ap.add_argument('--no-multithreading', action='store_true', help='Always pass an explicit thread count')
    ap.add_argument('--priority', type=str, help='Engine preference order (comma separated ids)')
    ap.add_argument('--disable', type=str, help='Disabled engines (comma separated ids)')
    ap.add_argument('--web-filters', type=Path, help='Web filter file (EXCLUDE/OPTIONS/REPLACE sections)')
    ap.add_argument('--gpu', action='store_true', help='Use hardware decoding when ffmpeg supports it')

    sub = ap.add_subparsers(dest='command', required=True)

    engines = sub.add_parser('engines', help='List registered engines')
    engines.add_argument('--check', action='store_true', help='Probe every executable')

    for name, help_text in (('select', 'Show which engine would handle a resource'),
                            ('build', 'Print the command an engine would run'),
                            ('run', 'Transcode a resource into a file')):
        p = sub.add_parser(name, help=help_text)
        p.add_argument('locator', help='File path or URL')
        p.add_argument('--engine', type=str, help='Engine id (default: automatic selection)')
        p.add_argument('--kind', choices=[k.value for k in MediaKind], help='Override the detected media kind')
        p.add_argument('--containers', type=str, default='mpegps,mpegts',
                       help='Containers the renderer accepts, in preference order')
        p.add_argument('--codecs', type=str, default='mpeg2video,wmv2', help='Video codecs the renderer accepts')
        p.add_argument('--audio-format', choices=['lpcm', 'wav', 'mp3'], default='lpcm')
        p.add_argument('--force-44khz', action='store_true')
        p.add_argument('--seek', type=float, default=0.0, help='Start offset in seconds')
        p.add_argument('--end', type=float, default=0.0, help='Duration limit in seconds')
        p.add_argument('--header', type=str, help='HTTP header blob for web streams')
        if name == 'run':
            p.add_argument('--output', '-o', type=Path, required=True, help='Destination file')

    thumb = sub.add_parser('thumbnail', help='Extract a raw image thumbnail with dcraw')
    thumb.add_argument('locator', help='Raw image file')
    thumb.add_argument('--output', '-o', type=Path, required=True)
    thumb.add_argument('--full', action='store_true', help='Decode the whole image instead')

    args = ap.parse_args()

    if args.threads is not None and args.threads < 1:
        print('Error: --threads must be at least 1', file=sys.stderr)
        sys.exit(2)

    return args


def build_configuration(args) -> EngineConfiguration:
    """Configuration snapshot from command line flags"""
    custom_paths = {}
    for entry in args.path:
        engine, sep, exe = entry.partition('=')
        if not sep:
            print(f'Error: --path expects ENGINE=EXE, got {entry}', file=sys.stderr)
            sys.exit(2)
        custom_paths[engine] = exe

    values = {
        'custom_paths': custom_paths,
        'engine_priority': split_list(args.priority),
        'disabled_engines': split_list(args.disable),
        'web_filters_path': args.web_filters,
        'gpu_acceleration': args.gpu,
    }
    if args.threads is not None:
        values['thread_count'] = args.threads
    if args.no_multithreading:
        values['multithreading'] = False
    return EngineConfiguration(**values)


def build_request(args):
    """Resource, media info and output parameters for a locator"""
    kind = MediaKind(args.kind) if getattr(args, 'kind', None) else None
    resource = resource_from_locator(args.locator, kind)
    media = MediaInfo(container=resource.container, size=resource.size)
    renderer = RendererCapabilities(
        name='Command line',
        video_containers=split_list(getattr(args, 'containers', '')) or ['mpegps'],
        video_codecs=split_list(getattr(args, 'codecs', '')) or ['mpeg2video'],
        transcode_to_wav=getattr(args, 'audio_format', '') == 'wav',
        transcode_to_mp3=getattr(args, 'audio_format', '') == 'mp3',
        force_44khz=getattr(args, 'force_44khz', False),
    )
    params = OutputParameters(
        time_seek=getattr(args, 'seek', 0.0),
        time_end=getattr(args, 'end', 0.0),
        renderer=renderer,
        header=getattr(args, 'header', None),
    )
    return resource, media, params


def pick_engine(registry, args, resource, media, params):
    """Explicit engine or the first compatible one"""
    if args.engine:
        return registry.require(args.engine)
    candidates = compatible_engines(registry, resource, media, params.renderer)
    return candidates[0] if candidates else None


def command_engines(registry, args):
    rich_output.print_header('Transcoding engines')
    if args.check:
        checker = create_engine_checker(registry)
        checker.check_all(show_progress=True)
        missing = checker.unavailable()
        if missing:
            rich_output.print_info(f'{len(missing)} engine(s) have no usable executable')
    rich_output.print_engines(registry)
    return 0


def command_select(registry, args):
    resource, media, params = build_request(args)
    candidates = compatible_engines(registry, resource, media, params.renderer)
    engine = registry.require(args.engine) if args.engine else (candidates[0] if candidates else None)
    rich_output.print_selection(engine, candidates)
    return 0 if engine else 1


def command_build(registry, args):
    resource, media, params = build_request(args)
    engine = pick_engine(registry, args, resource, media, params)
    if engine is None:
        rich_output.print_error('No engine can play this resource')
        return 1
    profile = registry.profile_for(engine)
    if profile.uses_named_pipe:
        # name only, nothing is created on disk
        params.write_pipe = create_pipe(unique_pipe_name(profile.pipe_suffix), registry.config.pipe_directory)
    config = registry.config.for_renderer(params.renderer)
    cmd = build_command(engine, resource, media, params, config, registry)
    rich_output.print_command(cmd, title=f'{engine.name} command')
    return 0


def command_run(registry, args):
    resource, media, params = build_request(args)
    engine = pick_engine(registry, args, resource, media, params)
    if engine is None:
        rich_output.print_error('No engine can play this resource')
        return 1

    config = registry.config.for_renderer(params.renderer)
    session = TranscodeSession(engine, resource, media, params, config, registry).launch()
    if not session.is_launched:
        rich_output.print_error(f'{engine.name} did not start', session.error)
        rich_output.print_results(session.results)
        return 1

    rich_output.print_command(session.command, title=f'{engine.name} command')
    try:
        with open(args.output, 'wb') as out:
            reader = session.open_output()
            try:
                shutil.copyfileobj(reader, out)
            finally:
                reader.close()
        session.wait()
    except (TranscodeError, OSError) as e:
        session.cancel()
        rich_output.print_error('Transcoding failed', str(e))
        return 1

    if not session.process.is_success:
        rich_output.print_error(f'{engine.name} exited with code {session.process.returncode}')
        rich_output.print_results(session.results)
        return 1
    rich_output.print_success(f'Wrote {args.output} ({format_file_size(args.output.stat().st_size)})')
    return 0


def command_thumbnail(registry, args):
    resource = resource_from_locator(args.locator, MediaKind.IMAGE)
    media = MediaInfo(container=resource.container, size=resource.size)
    params = OutputParameters(thumbnail=not args.full)
    engine = registry.resolve(EngineId.DCRAW.value)
    process = run_one_shot(registry, engine, resource, media, params)
    if not process.is_success or not process.output_bytes:
        rich_output.print_error('dcraw produced no image')
        rich_output.print_results(process.results)
        return 1
    args.output.write_bytes(process.output_bytes)
    rich_output.print_success(f'Wrote {args.output} ({format_file_size(len(process.output_bytes))})')
    return 0


COMMANDS = {
    'engines': command_engines,
    'select': command_select,
    'build': command_build,
    'run': command_run,
    'thumbnail': command_thumbnail,
}


def main():
    """Main entry point"""
    args = parse_arguments()
    setup_logging(args.verbose)
    setup_signal_handlers()

    registry = EngineRegistry(build_configuration(args))
    try:
        return COMMANDS[args.command](registry, args)
    except TranscodeError as e:
        rich_output.print_error(str(e))
        return 1


if __name__ == '__main__':
    sys.exit(main())
