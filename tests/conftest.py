"""
pytest configuration and fixtures for the orchestration core tests

Backends are replaced by small Python scripts so the tests need neither
ffmpeg, vlc nor dcraw.
"""

import os
import shutil
import stat
import subprocess
import sys
import tempfile
import textwrap
from pathlib import Path

import pytest

# Add the project root to path for importing
sys.path.insert(0, str(Path(__file__).parent.parent))
from transcore import (
    EngineConfiguration, EngineRegistry, MediaInfo, MediaKind, OutputParameters,
    RendererCapabilities, ResourceDescriptor,
)
from transcore.process_supervisor import live_processes

FAKE_PAYLOAD = b'FAKEDATA' * 4096

FAKE_FFMPEG = '''
import sys
import time

args = sys.argv[1:]
if '-version' in args:
    print('ffmpeg version 9.9-fake Copyright (c) the fake authors')
    sys.exit(0)
if '-protocols' in args:
    print('Supported file protocols:')
    print('Input:')
    for name in ('file', 'http', 'https', 'mmsh', 'rtmp'):
        print('  ' + name)
    print('Output:')
    print('  file')
    sys.exit(0)
if '-hwaccels' in args:
    print('Hardware acceleration methods:')
    print('vaapi')
    sys.exit(0)
if '--sleep' in args:
    time.sleep(60)
sink = args[-1]
payload = b'FAKEDATA' * 4096
if sink in ('pipe:', 'pipe:1', '-'):
    sys.stdout.buffer.write(payload)
    sys.stdout.flush()
else:
    with open(sink, 'wb') as f:
        f.write(payload)
sys.stderr.write('fake transcode done\\n')
'''

needs_fifo = pytest.mark.skipif(
    sys.platform == 'win32' or not hasattr(os, 'mkfifo') or shutil.which('mkfifo') is None,
    reason='named pipes need mkfifo',
)
posix_only = pytest.mark.skipif(sys.platform == 'win32', reason='scripts with a shebang need POSIX')


@pytest.fixture
def temp_dirs():
    """Create temporary directories for pipes and outputs"""
    temp_dir = Path(tempfile.mkdtemp(prefix='transcore_pytest_'))

    dirs = {
        'temp': temp_dir,
        'pipes': temp_dir / 'pipes',
        'output': temp_dir / 'output',
        'bin': temp_dir / 'bin',
    }

    for dir_path in dirs.values():
        dir_path.mkdir(exist_ok=True)

    yield dirs

    if temp_dir.exists():
        shutil.rmtree(temp_dir)


@pytest.fixture
def make_script(temp_dirs):
    """Write an executable Python script and return its path"""
    def _make_script(name: str, body: str) -> Path:
        path = temp_dirs['bin'] / name
        path.write_text(f'#!{sys.executable}\n' + textwrap.dedent(body))
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _make_script


@pytest.fixture
def fake_ffmpeg(make_script):
    return make_script('ffmpeg', FAKE_FFMPEG)


@pytest.fixture
def run_cli(temp_dirs):
    """Fixture to run main.py commands"""
    def _run_cli(args: list, expect_error: bool = False):
        script_path = Path(__file__).parent.parent / 'main.py'
        cmd = [sys.executable, str(script_path)] + args
        env = dict(os.environ, COLUMNS='400', TMPDIR=str(temp_dirs['pipes']))
        result = subprocess.run(cmd, capture_output=True, text=True, env=env, timeout=120)

        if not expect_error and result.returncode != 0:
            pytest.fail(f"CLI failed: {result.stdout}\n{result.stderr}")

        return result

    return _run_cli


@pytest.fixture
def config(temp_dirs):
    """Deterministic configuration: 4 threads, multithreading on"""
    return EngineConfiguration(
        multithreading=True,
        thread_count=4,
        pipe_directory=temp_dirs['pipes'],
        pipe_setup_timeout=5.0,
        backend_startup_timeout=5.0,
    )


@pytest.fixture
def registry(config):
    return EngineRegistry(config, platform='linux')


@pytest.fixture
def renderer():
    return RendererCapabilities(
        name='Test renderer',
        video_containers=['mpegps', 'mpegts'],
        video_codecs=['mpeg2video'],
    )


@pytest.fixture
def video_resource():
    return ResourceDescriptor(locator='/media/movies/movie.mkv', kind=MediaKind.VIDEO, container='matroska')


@pytest.fixture
def web_resource():
    return ResourceDescriptor(locator='http://example.com/live/stream', kind=MediaKind.VIDEO)


@pytest.fixture
def media():
    return MediaInfo(duration=5400.0, container='matroska', video_codec='h264', width=1920, height=1080)


@pytest.fixture
def make_params(renderer):
    """Fresh OutputParameters per call"""
    def _make_params(**kwargs) -> OutputParameters:
        kwargs.setdefault('renderer', renderer)
        return OutputParameters(**kwargs)

    return _make_params


@pytest.fixture(autouse=True)
def no_leaked_processes():
    """Every test must leave no supervised process running"""
    yield
    leaked = [p for p in live_processes() if p.process is not None and p.process.poll() is None]
    for process in leaked:
        process.stop_process()
    assert not leaked, f'processes left running: {leaked}'


def run_python(code: str) -> list:
    """Command that runs a Python snippet with the current interpreter"""
    return [sys.executable, '-c', textwrap.dedent(code)]
