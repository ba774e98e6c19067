"""
Per-backend strategy objects for the shared command pipeline

Each profile answers the same narrow set of questions (does it accept the
resource, can the renderer consume its output, which arguments go into each
segment of the command). Format variants are table lookups, not separate
code paths.
"""

import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .config import EngineConfiguration
from .engine_ids import EngineId, MediaKind
from .errors import CommandBuildError
from .models import (
    CaptureGeometry, EngineDescriptor, ExecutableInfo, MediaInfo,
    OutputParameters, RendererCapabilities, ResourceDescriptor,
)
from .option_table import OptionTable, parse_options
from .web_filters import WebFilters

LOGGER = logging.getLogger(__name__)

STDIN_MARKER = '-'
FFMPEG_STDOUT = 'pipe:'

# Renderer container name -> ffmpeg muxer
FFMPEG_MUXERS = {
    'mpegps': 'vob',
    'mpegts': 'mpegts',
    'asf': 'asf',
}

# Renderer container name -> (video codec, audio codec) for ffmpeg
FFMPEG_VIDEO_CODECS = {
    'mpegps': ('mpeg2video', 'ac3'),
    'mpegts': ('mpeg2video', 'ac3'),
    'asf': ('wmv2', 'wmav2'),
}

# Renderer audio format -> ffmpeg output arguments
FFMPEG_AUDIO_FORMATS = {
    'mp3': ['-f', 'mp3', '-ab', '320000'],
    'wav': ['-f', 'wav'],
    'lpcm': ['-f', 's16be'],
}

# Renderer container name -> (vcodec, acodec, mux) for VLC's transcode chain
VLC_VIDEO_CODECS = {
    'asf': ('wmv2', 'wma', 'asf'),
    'mpegts': ('mp2v', 'mp2a', 'ts'),
    'mpegps': ('mp2v', 'mp2a', 'ps'),
}

# Renderer audio format -> (acodec, mux) for VLC
VLC_AUDIO_FORMATS = {
    'wav': ('s16l', 'wav'),
    'lpcm': ('s16b', 'raw'),
    'mp3': ('mpga', 'raw'),
}

VIDEO_CONTAINERS = {
    'avi', 'matroska', 'mkv', 'mp4', 'm4v', 'mov', 'mpegps', 'mpegts', 'mpeg', 'vob',
    'm2ts', 'asf', 'wmv', 'flv', 'webm', 'ogg', '3gp', 'dvr-ms', 'rm', 'divx',
}
AUDIO_CONTAINERS = {
    'mp3', 'flac', 'ogg', 'oga', 'wav', 'aac', 'm4a', 'wma', 'ape', 'alac', 'aiff',
    'dts', 'ac3', 'mka', 'opus', 'wv', 'mpc', 'tta',
}
RAW_CONTAINERS = {
    'arw', 'cr2', 'cr3', 'crw', 'dng', 'erf', 'kdc', 'mrw', 'nef', 'nrw', 'orf',
    'pef', 'raf', 'raw', 'rw2', 'srw', '3fr',
}

DEFAULT_FFMPEG_PROTOCOLS = [
    'file', 'ftp', 'hls', 'http', 'https', 'mmsh', 'mmst', 'rtmp', 'rtp', 'rtsp', 'tcp', 'udp',
]
VLC_PROTOCOLS = {'http', 'https', 'mms', 'mmsh', 'rtsp', 'rtp', 'udp', 'rtmp', 'ftp'}

THUMBNAIL_BUFFER_HINT = 150000
HALF_SIZE_BUFFER_HINT = 500000
IMAGE_BUFFER_HINT = 5000000


def format_seconds(value: float) -> str:
    """30.0 -> "30", 12.5 -> "12.5" """
    return f'{value:.3f}'.rstrip('0').rstrip('.')


def ffmpeg_protocols(info: Optional[ExecutableInfo]) -> List[str]:
    protocols = list(info.protocols) if info and info.protocols else list(DEFAULT_FFMPEG_PROTOCOLS)
    # mms:// locators are rewritten to mmsh://
    if 'mmsh' in protocols and 'mms' not in protocols:
        protocols.append('mms')
    return protocols


@dataclass
class CommandContext:
    """Everything one command build may look at"""
    engine: EngineDescriptor
    resource: ResourceDescriptor
    media: MediaInfo
    params: OutputParameters
    config: EngineConfiguration
    executable_info: Optional[ExecutableInfo] = None
    web_filters: Optional[WebFilters] = None
    platform: str = sys.platform
    thread_args: List[str] = field(default_factory=list)

    @property
    def renderer(self) -> RendererCapabilities:
        return self.params.renderer


class BackendProfile:
    """Default hooks; profiles override only what differs"""
    family = ''
    kind = MediaKind.VIDEO
    web = False
    uses_named_pipe = False
    stdout_marker = FFMPEG_STDOUT
    pipe_suffix = ''

    def accepts(self, resource: ResourceDescriptor, info: Optional[ExecutableInfo] = None,
                filters: Optional[WebFilters] = None) -> bool:
        raise NotImplementedError

    def output_format(self, renderer: RendererCapabilities) -> Optional[str]:
        return None

    def accepts_renderer(self, renderer: RendererCapabilities) -> bool:
        return self.output_format(renderer) is not None

    def required_feature(self, resource: ResourceDescriptor) -> Optional[str]:
        """Feature key an executable must support for this resource"""
        return None

    def input_locator(self, ctx: CommandContext) -> str:
        if ctx.resource.fed_internally:
            return STDIN_MARKER
        return ctx.resource.locator

    def custom_options(self, ctx: CommandContext) -> OptionTable:
        return parse_options(ctx.config.custom_options_for(ctx.engine.id))

    def global_options(self, ctx: CommandContext) -> List[str]:
        return []

    def seek_options(self, ctx: CommandContext) -> List[str]:
        return []

    def input_args(self, ctx: CommandContext, locator: str) -> List[str]:
        return [locator]

    def output_options(self, ctx: CommandContext) -> List[str]:
        return []

    def sink(self, ctx: CommandContext) -> List[str]:
        return []

    def buffer_size_hint(self, ctx: CommandContext) -> Optional[int]:
        return ctx.params.buffer_size_hint

    def prepare(self, ctx: CommandContext):
        """Side effects needed before the command can run"""

    def _pipe_sink(self, ctx: CommandContext) -> str:
        pipe = ctx.params.write_pipe
        if pipe is not None:
            return pipe.write_end(self.stdout_marker)
        if self.uses_named_pipe:
            raise CommandBuildError(f'{ctx.engine.id} writes to a pipe but no pipe slot is set')
        if ctx.params.output_path is not None:
            return str(ctx.params.output_path)
        return self.stdout_marker


class FFmpegProfile(BackendProfile):
    """ffmpeg video transcoding; the other ffmpeg engines override single hooks"""
    family = 'ffmpeg'
    kind = MediaKind.VIDEO
    containers = VIDEO_CONTAINERS

    def accepts(self, resource, info=None, filters=None):
        if resource.kind != self.kind or resource.is_web:
            return False
        return resource.container is None or resource.container in self.containers

    def output_format(self, renderer):
        for container in renderer.video_containers:
            if container in FFMPEG_MUXERS and FFMPEG_VIDEO_CODECS[container][0] in renderer.video_codecs:
                return container
        return None

    def custom_options(self, ctx):
        table = super().custom_options(ctx)
        table.update(parse_options(ctx.renderer.custom_ffmpeg_options))
        return table

    def global_options(self, ctx):
        options = ['-y', '-loglevel', ctx.config.backend_log_level]
        info = ctx.executable_info
        if (ctx.config.gpu_acceleration and self.kind == MediaKind.VIDEO and info and info.hwaccels
                and not ctx.resource.is_screen_capture):
            options += ['-hwaccel', 'auto']
        return options

    def seek_options(self, ctx):
        if ctx.params.time_seek > 0:
            return ['-ss', format_seconds(ctx.params.time_seek)]
        return []

    def sink(self, ctx):
        return [self._pipe_sink(ctx)]

    def input_args(self, ctx, locator):
        if ctx.resource.is_screen_capture:
            return screen_capture_input(ctx.params.capture_geometry or CaptureGeometry(), ctx.platform)
        return ['-i', locator]

    def output_options(self, ctx):
        container = self.output_format(ctx.renderer)
        if container is None:
            raise CommandBuildError(f'renderer {ctx.renderer.name} accepts no container produced by {ctx.engine.id}')
        options = list(ctx.thread_args)
        options += scale_options(ctx.media, ctx.renderer)
        if ctx.params.time_end > 0:
            options += ['-t', format_seconds(ctx.params.time_end)]
        options += video_bitrate_options(ctx.media, ctx.renderer, ctx.config)
        options += audio_bitrate_options(container, ctx.config)
        video_codec, audio_codec = FFMPEG_VIDEO_CODECS[container]
        options += ['-c:v', video_codec, '-c:a', audio_codec, '-f', FFMPEG_MUXERS[container]]
        return options


class AviSynthFFmpegProfile(FFmpegProfile):
    """ffmpeg reading a generated AviSynth script (Windows)"""

    def accepts(self, resource, info=None, filters=None):
        return not resource.is_screen_capture and super().accepts(resource, info, filters)

    def input_locator(self, ctx):
        return str(avisynth_script_path(ctx))

    def prepare(self, ctx):
        path = avisynth_script_path(ctx)
        source = ctx.resource.locator.replace('"', '')
        path.write_text(f'DirectShowSource("{source}", convertfps=true)\n', encoding='utf-8')
        ctx.params.scratch['avisynth_script'] = path
        LOGGER.debug("Wrote AviSynth script %s", path)


class FFmpegAudioProfile(FFmpegProfile):
    kind = MediaKind.AUDIO
    containers = AUDIO_CONTAINERS

    def output_format(self, renderer):
        audio_format = renderer.preferred_audio_format
        return audio_format if audio_format in renderer.audio_formats else None

    def output_options(self, ctx):
        audio_format = self.output_format(ctx.renderer)
        if audio_format is None:
            raise CommandBuildError(f'renderer {ctx.renderer.name} cannot consume {ctx.renderer.preferred_audio_format}')
        options = list(ctx.thread_args)
        if ctx.params.time_end > 0:
            options += ['-t', format_seconds(ctx.params.time_end)]
        options += ['-vn']
        options += FFMPEG_AUDIO_FORMATS[audio_format]
        options += resample_options(ctx.renderer, ctx.config)
        return options


class FFmpegWebVideoProfile(FFmpegProfile):
    web = True
    uses_named_pipe = True
    pipe_suffix = 'ffmpegwebvideo'

    def accepts(self, resource, info=None, filters=None):
        if resource.kind != MediaKind.VIDEO or not resource.is_web:
            return False
        if resource.protocol not in ffmpeg_protocols(info):
            return False
        return not (filters and filters.is_excluded(resource.locator))

    def required_feature(self, resource):
        return f'protocol:{resource.protocol}'

    def input_locator(self, ctx):
        if ctx.resource.fed_internally:
            return STDIN_MARKER
        locator = ctx.resource.locator
        if locator.startswith('mms:'):
            locator = 'mmsh:' + locator[4:]
        if ctx.web_filters is not None:
            locator = ctx.web_filters.rewrite(locator)
        return locator

    def custom_options(self, ctx):
        # ascending priority: configured, automatic, header, attached, renderer
        table = parse_options(ctx.config.custom_options_for(ctx.engine.id))
        if ctx.web_filters is not None:
            table.update(ctx.web_filters.options_for(self.input_locator(ctx)))
        header = (ctx.params.header or '').strip()
        if header.startswith('-'):
            table.update(parse_options(header))
        elif header:
            table.add('-headers', header)
        table.update(parse_options(ctx.resource.attached_options))
        table.update(parse_options(ctx.renderer.custom_ffmpeg_options))
        return table


class VlcProfile(BackendProfile):
    """VLC driven through its dummy interface and a --sout chain"""
    family = 'vlc'
    uses_named_pipe = True
    stdout_marker = '-'
    pipe_suffix = 'vlc'

    def __init__(self, kind: MediaKind, web: bool):
        self.kind = kind
        self.web = web

    def accepts(self, resource, info=None, filters=None):
        if resource.kind != self.kind:
            return False
        if self.web:
            return resource.is_web and resource.protocol in VLC_PROTOCOLS
        if resource.is_web or resource.is_screen_capture:
            return False
        return resource.container is None or resource.container in VIDEO_CONTAINERS

    def output_format(self, renderer):
        if self.kind == MediaKind.AUDIO:
            audio_format = renderer.preferred_audio_format
            return audio_format if audio_format in renderer.audio_formats else None
        for container in renderer.video_containers:
            if container in VLC_VIDEO_CODECS:
                return container
        return None

    def global_options(self, ctx):
        options = ['-I', 'dummy']
        if ctx.platform == 'win32':
            options.append('--dummy-quiet')
        return options

    def seek_options(self, ctx):
        if ctx.params.time_seek > 0:
            return ['--start-time', format_seconds(ctx.params.time_seek)]
        return []

    def sink(self, ctx):
        output = self.output_format(ctx.renderer)
        if output is None:
            raise CommandBuildError(f'renderer {ctx.renderer.name} accepts no format produced by {ctx.engine.id}')
        samplerate = 44100 if ctx.renderer.force_44khz else 48000
        if self.kind == MediaKind.AUDIO:
            acodec, mux = VLC_AUDIO_FORMATS[output]
            transcode = f'acodec={acodec},channels=2,samplerate={samplerate}'
        else:
            vcodec, acodec, mux = VLC_VIDEO_CODECS[output]
            transcode = (f'vcodec={vcodec},acodec={acodec},vb=4096,ab=128,'
                         f'channels=2,samplerate={samplerate}')
        dst = self._pipe_sink(ctx)
        sout = f'#transcode{{{transcode}}}:std{{access=file,mux={mux},dst="{dst}"}}'
        return ['--sout', sout, 'vlc://quit']


class DcrawProfile(BackendProfile):
    """One-shot raw image decoder writing to stdout"""
    family = 'dcraw'
    kind = MediaKind.IMAGE

    def accepts(self, resource, info=None, filters=None):
        return resource.kind == MediaKind.IMAGE and resource.container in RAW_CONTAINERS

    def output_format(self, renderer):
        return 'image' if renderer.accepts_images else None

    def half_size(self, ctx: CommandContext) -> bool:
        limit = ctx.renderer.max_image_size
        longest = max(ctx.media.width, ctx.media.height)
        return bool(limit and longest and limit * 2 <= longest)

    def global_options(self, ctx):
        # options must precede the file name
        if ctx.params.thumbnail:
            if ctx.media.has_embedded_thumbnail:
                return ['-e', '-c', '-M', '-w']
            return ['-h', '-c', '-M', '-w']
        options = ['-c', '-M', '-w']
        if self.half_size(ctx):
            options.insert(0, '-h')
        return options

    def buffer_size_hint(self, ctx):
        if ctx.params.buffer_size_hint:
            return ctx.params.buffer_size_hint
        size = ctx.media.size or ctx.resource.size
        if ctx.params.thumbnail:
            if ctx.media.has_embedded_thumbnail:
                return THUMBNAIL_BUFFER_HINT
            return size // 4 if size else HALF_SIZE_BUFFER_HINT
        return size or IMAGE_BUFFER_HINT


def screen_capture_input(geometry: CaptureGeometry, platform: str) -> List[str]:
    """Grab device arguments for the screen pseudo-protocol"""
    size = f'{geometry.width}x{geometry.height}'
    rate = str(geometry.framerate)
    if platform == 'win32':
        return ['-f', 'gdigrab', '-framerate', rate, '-offset_x', str(geometry.x),
                '-offset_y', str(geometry.y), '-video_size', size, '-i', 'desktop']
    if platform == 'darwin':
        return ['-f', 'avfoundation', '-framerate', rate, '-video_size', size,
                '-i', '1:none']
    return ['-f', 'x11grab', '-framerate', rate, '-video_size', size,
            '-i', f'{geometry.display}+{geometry.x},{geometry.y}']


def scale_options(media: MediaInfo, renderer: RendererCapabilities) -> List[str]:
    if not renderer.exceeds_resolution(media.width, media.height):
        return []
    return ['-vf', f'scale={renderer.max_width}:{renderer.max_height}:force_original_aspect_ratio=decrease']


def video_bitrate_options(media: MediaInfo, renderer: RendererCapabilities,
                          config: EngineConfiguration) -> List[str]:
    """-bufsize/-maxrate from the configured and renderer bitrate ceilings"""
    max_rate = config.max_bitrate_mbits
    if renderer.max_video_bitrate and (max_rate == 0 or renderer.max_video_bitrate < max_rate):
        max_rate = renderer.max_video_bitrate
    if max_rate <= 0:
        return []

    # Mb -> kb, halved since up to a second of video is sent in advance
    max_kbits = max_rate * 1000 // 2
    bufsize = 1835
    if media.is_hd:
        bufsize = max_kbits // 3
    if bufsize > 7000:
        bufsize = 7000
    if config.max_bitrate_bufsize:
        bufsize = config.max_bitrate_bufsize

    max_kbits -= config.audio_bitrate
    max_kbits = max_kbits // 1000 * 1000
    if max_kbits <= 0:
        return []
    return ['-bufsize', f'{bufsize}k', '-maxrate', f'{max_kbits}k']


def audio_bitrate_options(container: str, config: EngineConfiguration) -> List[str]:
    bitrate = config.audio_bitrate
    channels = config.audio_channels
    if container != 'mpegps':
        bitrate = min(bitrate, 384)
    if container == 'asf':
        channels = min(channels, 2)
    return ['-ab', f'{bitrate}k', '-ac', str(channels)]


def resample_options(renderer: RendererCapabilities, config: EngineConfiguration) -> List[str]:
    if not config.audio_resample:
        return []
    if renderer.force_44khz:
        return ['-ar', '44100', '-ac', '2']
    return ['-ar', '48000', '-ac', '2']


def avisynth_script_path(ctx: CommandContext) -> Path:
    script = ctx.params.scratch.get('avisynth_script')
    if script:
        return Path(script)
    return ctx.config.pipe_directory / f'{Path(ctx.resource.locator).stem}.avs'


PROFILES: Dict[EngineId, BackendProfile] = {
    EngineId.AVISYNTH_FFMPEG: AviSynthFFmpegProfile(),
    EngineId.FFMPEG_AUDIO: FFmpegAudioProfile(),
    EngineId.FFMPEG_VIDEO: FFmpegProfile(),
    EngineId.VLC_VIDEO: VlcProfile(MediaKind.VIDEO, web=False),
    EngineId.FFMPEG_WEB_VIDEO: FFmpegWebVideoProfile(),
    EngineId.VLC_WEB_VIDEO: VlcProfile(MediaKind.VIDEO, web=True),
    EngineId.VLC_AUDIO_STREAMING: VlcProfile(MediaKind.AUDIO, web=True),
    EngineId.DCRAW: DcrawProfile(),
}


def profile_for(engine_id: EngineId) -> BackendProfile:
    return PROFILES[engine_id]
