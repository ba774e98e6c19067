"""
Dask-based concurrent executable checks for all registered engines
"""

import os
from typing import Dict, List, Optional, Tuple

import dask
from dask import delayed
from dask.diagnostics import ProgressBar

from .engine_ids import EngineId
from .engine_registry import EngineRegistry
from .errors import ExecutableErrorType
from .executable_utils import probe_executable
from .models import EngineDescriptor, ExecutableInfo


class ParallelEngineChecker:
    """Probe every engine executable once, in parallel"""

    def __init__(self, registry: EngineRegistry, max_workers: Optional[int] = None):
        self.registry = registry
        self.max_workers = max_workers or min(os.cpu_count() or 1, 4)

    def _probe_targets(self, engines: List[EngineDescriptor]) -> Dict[Tuple[str, str], List[EngineDescriptor]]:
        """Group engines sharing an executable so each binary is probed once"""
        targets: Dict[Tuple[str, str], List[EngineDescriptor]] = {}
        for engine in engines:
            family = self.registry.profile_for(engine).family
            key = (family, self.registry.executable_for(engine))
            targets.setdefault(key, []).append(engine)
        return targets

    @staticmethod
    def _probe_single(family: str, executable: str) -> ExecutableInfo:
        return probe_executable(family, executable, detect_features=family == 'ffmpeg')

    def check_all(self, show_progress: bool = False,
                  engines: Optional[List[EngineDescriptor]] = None) -> Dict[EngineId, ExecutableInfo]:
        """Probe the given (default: all enabled) engines and record the results"""
        if engines is None:
            engines = self.registry.engines(only_enabled=True)
        if not engines:
            return {}

        targets = self._probe_targets(engines)
        keys = list(targets)
        tasks = [delayed(self._probe_single)(family, executable) for family, executable in keys]

        if show_progress:
            with ProgressBar():
                infos = dask.compute(*tasks, scheduler='threads', num_workers=self.max_workers)
        else:
            infos = dask.compute(*tasks, scheduler='threads', num_workers=self.max_workers)

        results = {}
        for key, info in zip(keys, infos):
            for engine in targets[key]:
                self.registry.record_executable_info(engine.id, info)
                self.registry.record_feature_errors(engine, info)
                results[engine.id] = info
        return results

    def unavailable(self) -> Dict[EngineId, str]:
        """Engines with a general executable error"""
        missing = {}
        for engine in self.registry.all_engines():
            info = self.registry.executable_info(engine.id)
            if info is not None and info.error_type == ExecutableErrorType.GENERAL:
                missing[engine.id] = info.error_text or ''
        return missing


def create_engine_checker(registry: EngineRegistry, max_workers: Optional[int] = None) -> ParallelEngineChecker:
    """Factory function to create an engine checker"""
    return ParallelEngineChecker(registry, max_workers=max_workers)
