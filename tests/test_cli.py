"""
Test the command line interface
"""

import argparse

import pytest

from conftest import FAKE_PAYLOAD, posix_only
from transcore import EngineId
import main


def namespace(**overrides):
    values = dict(path=[], threads=None, no_multithreading=False, priority=None, disable=None,
                  web_filters=None, gpu=False)
    values.update(overrides)
    return argparse.Namespace(**values)


class TestBuildConfiguration:
    """Test flags map onto the configuration"""

    def test_defaults(self):
        config = main.build_configuration(namespace())

        assert config.custom_paths == {}
        assert config.engine_priority == []
        assert not config.gpu_acceleration

    def test_flags(self):
        config = main.build_configuration(namespace(
            path=['ffmpegvideo=/opt/ffmpeg', 'VLC Transcoder=/opt/vlc'],
            threads=2, no_multithreading=True, priority='vlcvideo,ffmpegvideo', disable='dcraw', gpu=True,
        ))

        assert config.custom_paths == {EngineId.FFMPEG_VIDEO: '/opt/ffmpeg', EngineId.VLC_VIDEO: '/opt/vlc'}
        assert config.thread_count == 2
        assert config.multithreading is False
        assert config.engine_priority == [EngineId.VLC_VIDEO, EngineId.FFMPEG_VIDEO]
        assert config.disabled_engines == [EngineId.DCRAW]
        assert config.gpu_acceleration

    def test_bad_path_entry(self):
        with pytest.raises(SystemExit):
            main.build_configuration(namespace(path=['ffmpeg-without-exe']))

    def test_split_list(self):
        assert main.split_list(' a, b,,c ') == ['a', 'b', 'c']
        assert main.split_list(None) == []


class TestCommands:
    """Test the CLI end to end"""

    def test_engines(self, run_cli):
        result = run_cli(['engines'])

        assert 'ffmpegvideo' in result.stdout
        assert 'dcraw' in result.stdout

    def test_engines_disabled(self, run_cli):
        result = run_cli(['--disable', 'dcraw', 'engines'])

        assert 'disabled' in result.stdout

    def test_select(self, run_cli):
        result = run_cli(['select', '/media/movies/movie.mkv'])

        assert 'Selected:' in result.stdout
        assert 'ffmpegvideo' in result.stdout
        assert 'vlctranscoder' in result.stdout

    def test_select_nothing(self, run_cli):
        result = run_cli(['select', '/media/movies/movie.xyz', '--containers', 'matroska'], expect_error=True)

        assert result.returncode == 1
        assert 'No engine can play this resource' in result.stdout

    def test_build_with_seek(self, run_cli):
        result = run_cli(['build', '/media/movies/movie.mkv', '--seek', '30'])

        assert '-ss 30 -i /media/movies/movie.mkv' in result.stdout
        assert '-f vob' in result.stdout

    def test_build_web_stream(self, run_cli):
        result = run_cli(['build', 'http://example.com/live/stream'])

        assert 'ffmpegwebvideo_' in result.stdout

    def test_build_with_alternate_path(self, run_cli):
        result = run_cli(['--path', 'ffmpegvideo=/opt/custom/ffmpeg', 'build', '/media/movies/movie.mkv'])

        assert '/opt/custom/ffmpeg -y' in result.stdout

    def test_invalid_threads(self, run_cli):
        result = run_cli(['--threads', '0', 'engines'], expect_error=True)

        assert result.returncode == 2


@posix_only
class TestRun:
    """Test transcoding through the fake backend"""

    def test_run_to_file(self, run_cli, fake_ffmpeg, temp_dirs):
        output = temp_dirs['output'] / 'movie.mpg'

        result = run_cli(['--path', f'ffmpegvideo={fake_ffmpeg}', 'run', '/media/movies/movie.mkv',
                          '--output', str(output)])

        assert 'Wrote' in result.stdout
        assert output.read_bytes() == FAKE_PAYLOAD

    def test_run_missing_backend(self, run_cli, temp_dirs):
        output = temp_dirs['output'] / 'movie.mpg'

        result = run_cli(['--path', f'ffmpegvideo={temp_dirs["bin"] / "missing"}', 'run',
                          '/media/movies/movie.mkv', '--output', str(output)], expect_error=True)

        assert result.returncode == 1

    def test_thumbnail(self, run_cli, make_script, temp_dirs):
        dcraw = make_script('dcraw', '''
            import sys
            sys.stdout.buffer.write(b'THUMB' if '-e' in sys.argv else b'FULL')
        ''')
        output = temp_dirs['output'] / 'thumb.jpg'

        run_cli(['--path', f'dcraw={dcraw}', 'thumbnail', '/photos/img.nef', '--output', str(output)])

        assert output.read_bytes() == b'THUMB'
