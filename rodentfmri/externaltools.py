"""
rodentfmri.externaltools
========================

Checked invocation of the command line tools the preprocessing stages
delegate to (SPM through MATLAB or Octave, FSL, ANTs).

Every call verifies that the executable is on ``PATH`` and checks the
exit status.  Failures are logged with the tool's stderr and raised as
:class:`~rodentfmri.exceptions.ExternalToolError`, so a failed
registration never silently produces a missing file further down the
pipeline.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from typing import Optional, Sequence

from .exceptions import ExternalToolError


logger = logging.getLogger(__name__)

MATLAB_CANDIDATES = ('matlab', 'octave')


def require_executable(name: str) -> str:
    """Return the full path of ``name`` or raise :class:`ExternalToolError`."""
    path = shutil.which(name)
    if path is None:
        logger.error('%s not found in PATH', name)
        raise ExternalToolError(f'{name} command not found')
    return path


def run_command(
    cmd: Sequence[str],
    name: Optional[str] = None,
    cwd: Optional[str] = None,
) -> subprocess.CompletedProcess:
    """Run ``cmd`` and fail loudly on a missing tool or a non-zero exit status.

    Parameters
    ----------
    cmd : sequence of str
        Command and arguments; ``cmd[0]`` is looked up on ``PATH``.
    name : str, optional
        Label used in log and error messages (defaults to ``cmd[0]``).
    cwd : str, optional
        Working directory.
    """
    cmd = [os.fspath(c) for c in cmd]
    name = name or os.path.basename(cmd[0])
    cmd[0] = require_executable(cmd[0])
    logger.info('Running %s', name)
    logger.debug('Command: %s', ' '.join(cmd))
    try:
        return subprocess.run(cmd, check=True, capture_output=True, cwd=cwd)
    except FileNotFoundError as e:
        logger.error('%s command not found', name)
        raise ExternalToolError(f'{name} command not found') from e
    except subprocess.CalledProcessError as e:
        stderr = e.stderr.decode('utf-8', 'ignore') if e.stderr else ''
        logger.error('%s failed with exit status %d: %s', name, e.returncode, stderr)
        raise ExternalToolError(f'{name} failed with exit status {e.returncode}') from e


def find_matlab() -> str:
    """Path of ``matlab``, or ``octave`` when MATLAB is not installed."""
    for candidate in MATLAB_CANDIDATES:
        path = shutil.which(candidate)
        if path is not None:
            return path
    logger.error('MATLAB/Octave not found in PATH')
    raise ExternalToolError('MATLAB/Octave command not found')


def run_matlab(script: str, name: str = 'MATLAB', cwd: Optional[str] = None) -> subprocess.CompletedProcess:
    """Run a MATLAB/Octave snippet that exits with status 1 on error."""
    wrapped = f"try, {script} catch e, disp(e.message); exit(1); end; exit;"
    matlab = find_matlab()
    if os.path.basename(matlab).startswith('octave'):
        cmd = [matlab, '--no-gui', '--eval', wrapped]
    else:
        cmd = [matlab, '-nodisplay', '-nosplash', '-r', wrapped]
    return run_command(cmd, name=name, cwd=cwd)


__all__ = [
    'require_executable',
    'run_command',
    'find_matlab',
    'run_matlab',
]
