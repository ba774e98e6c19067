"""
Test named pipe handles, readiness and cleanup
"""

import io
import os
import stat
import threading

import pytest

from conftest import needs_fifo
from transcore import PipeHandle, PipeSetupError, create_pipe, launch, unique_pipe_name


class TestUniqueNames:
    """Test pipe names never collide"""

    def test_prefix_kept(self):
        assert unique_pipe_name('ffmpegwebvideo').startswith('ffmpegwebvideo_')

    def test_unique_across_threads(self):
        names = []
        lock = threading.Lock()

        def worker():
            for _ in range(200):
                name = unique_pipe_name('vlc')
                with lock:
                    names.append(name)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(set(names)) == 800


class TestStdioMode:
    """Test the standard output fallback"""

    def test_endpoints(self, temp_dirs):
        handle = create_pipe('fallback', temp_dirs['pipes'], stdio=True)

        assert handle.setup_command() is None
        assert handle.write_end('pipe:') == 'pipe:'
        assert handle.read_end() is None
        assert handle.is_ready
        assert handle.exists()

    def test_reader_bound_to_stdout(self, temp_dirs):
        handle = create_pipe('fallback', temp_dirs['pipes'], stdio=True)
        handle.bind_stdout(io.BytesIO(b'payload'))

        with handle.open_reader(1.0) as reader:
            assert reader.read() == b'payload'

        assert reader.closed

    def test_reader_without_backend(self, temp_dirs):
        handle = create_pipe('fallback', temp_dirs['pipes'], stdio=True)

        with pytest.raises(PipeSetupError):
            handle.open_reader(0.05)


class TestReadiness:
    """Test the readiness signal of a named pipe"""

    def test_setup_command(self, temp_dirs):
        handle = PipeHandle('named', temp_dirs['pipes'], stdio=False)

        assert handle.setup_command() == ['mkfifo', '-m', '600', str(temp_dirs['pipes'] / 'named')]
        assert handle.write_end() == str(temp_dirs['pipes'] / 'named')
        assert not handle.is_ready

    def test_wait_ready_times_out(self, temp_dirs):
        handle = PipeHandle('never', temp_dirs['pipes'], stdio=False)

        with pytest.raises(PipeSetupError) as exc_info:
            handle.wait_ready(0.05)

        assert 'not created within' in str(exc_info.value)
        assert not handle.is_ready

    def test_abort_setup(self, temp_dirs):
        handle = PipeHandle('aborted', temp_dirs['pipes'], stdio=False)
        handle.abort_setup()

        with pytest.raises(PipeSetupError) as exc_info:
            handle.wait_ready(5)

        assert exc_info.value.pipe_name == 'aborted'
        assert 'cancelled' in str(exc_info.value)

    @needs_fifo
    def test_setup_process_creates_fifo(self, temp_dirs):
        handle = create_pipe(unique_pipe_name('test'), temp_dirs['pipes'], stdio=False)
        process = launch(handle.setup_command())
        handle.watch_setup(process)
        process.run_detached()

        handle.wait_ready(5)

        assert handle.is_ready
        assert stat.S_ISFIFO(os.stat(handle.path).st_mode)

    @needs_fifo
    def test_failed_setup(self, temp_dirs):
        handle = create_pipe('orphan', temp_dirs['pipes'] / 'missing', stdio=False)
        process = launch(handle.setup_command())
        handle.watch_setup(process)
        process.run_detached()

        with pytest.raises(PipeSetupError) as exc_info:
            handle.wait_ready(5)

        assert 'setup process failed' in str(exc_info.value)


class TestNamedReader:
    """Test opening the read end of a FIFO"""

    @needs_fifo
    def test_reads_writer_output(self, temp_dirs):
        handle = PipeHandle('stream', temp_dirs['pipes'], stdio=False)
        os.mkfifo(handle.path)

        def writer():
            with open(handle.write_end(), 'wb') as f:
                f.write(b'x' * 100000)

        thread = threading.Thread(target=writer)
        thread.start()
        with handle.open_reader(5) as reader:
            data = reader.read()
        thread.join()

        assert len(data) == 100000

    @needs_fifo
    def test_no_writer(self, temp_dirs):
        handle = PipeHandle('silent', temp_dirs['pipes'], stdio=False)
        os.mkfifo(handle.path)

        with pytest.raises(PipeSetupError) as exc_info:
            handle.open_reader(0.2)

        assert 'no writer' in str(exc_info.value)

    def test_missing_pipe(self, temp_dirs):
        handle = PipeHandle('absent', temp_dirs['pipes'], stdio=False)

        with pytest.raises(PipeSetupError):
            handle.open_reader(0.1)


class TestCleanup:
    """Test delete-later semantics"""

    @pytest.fixture
    def pipe_file(self, temp_dirs):
        # a regular file stands in for the FIFO, removal works the same
        handle = PipeHandle('cleanup', temp_dirs['pipes'], stdio=False)
        handle.path.touch()
        return handle

    def test_removed_after_both_ends_close(self, pipe_file):
        pipe_file.delete_later()
        pipe_file.mark_closed('write')
        assert pipe_file.path.exists()

        pipe_file.mark_closed('read')

        assert not pipe_file.path.exists()
        assert pipe_file.removed

    def test_removed_when_request_completes(self, pipe_file):
        pipe_file.delete_later()

        pipe_file.request_completed()

        assert not pipe_file.path.exists()

    def test_kept_without_delete_request(self, pipe_file):
        pipe_file.mark_closed('write')
        pipe_file.mark_closed('read')
        pipe_file.request_completed()

        assert pipe_file.path.exists()
        assert not pipe_file.removed

    def test_delete_after_close(self, pipe_file):
        pipe_file.mark_closed('write')
        pipe_file.mark_closed('read')

        pipe_file.delete_later()

        assert not pipe_file.path.exists()

    def test_idempotent(self, pipe_file):
        pipe_file.delete_later()
        pipe_file.request_completed()
        pipe_file.request_completed()
        pipe_file.mark_closed('read')
        pipe_file.mark_closed('write')

        assert pipe_file.removed
