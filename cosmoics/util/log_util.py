import logging
import sys
from time import time

# Package log levels, between WARNING (30) and ERROR (40) so that pipeline
# progress survives a WARNING threshold
PACKAGE_LEVELS = {
    'ICS_WARN': 37,
    'ICS_INFO': 35,
    'ICS_DEBUG': 25,
}

def addLoggingLevel(levelName, levelNum, methodName=None):
    """
    Add a new logging level to the `logging` module and the current logger class.

    `levelName` becomes an attribute of the `logging` module with the value
    `levelNum`. `methodName` (default `levelName.lower()`) becomes a
    convenience method both on `logging` and on `logging.getLoggerClass()`.
    Registering the same level twice is harmless.

    Example
    -------
    >>> addLoggingLevel('ICS_INFO', 35)
    >>> logging.getLogger(__name__).ics_info('that worked')
    """
    if not methodName:
        methodName = levelName.lower()

    def logForLevel(self, message, *args, **kwargs):
        if self.isEnabledFor(levelNum):
            self._log(levelNum, message, args, **kwargs)
    def logToRoot(message, *args, **kwargs):
        logging.log(levelNum, message, *args, **kwargs)

    logging.addLevelName(levelNum, levelName)
    setattr(logging, levelName, levelNum)
    setattr(logging.getLoggerClass(), methodName, logForLevel)
    setattr(logging, methodName, logToRoot)

for _name, _num in PACKAGE_LEVELS.items():
    addLoggingLevel(_name, _num)

def log_wrapper(logger, message, *args, exception_info=False, level='ics_info'):
    """Log `message` at a standard or package level given by name."""
    name = level.upper()
    if name in PACKAGE_LEVELS:
        levelNum = PACKAGE_LEVELS[name]
    else:
        levelNum = logging.getLevelName(name)
        if not isinstance(levelNum, int):
            raise ValueError(f"Unknown logging level: {level}")
    logger.log(levelNum, message, *args, exc_info=exception_info)

def setup_logging(level='ICS_INFO', stream=None):
    """Attach a stream handler to the package logger."""
    logger = logging.getLogger('cosmoics')
    if not logger.handlers:
        handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(logging.Formatter('%(asctime)s %(name)s %(levelname)s: %(message)s'))
        logger.addHandler(handler)
    logger.setLevel(PACKAGE_LEVELS.get(level.upper(), level))
    return logger

def parprint(*args, **kwargs):
    print("".join(map(str, args)), **kwargs);  sys.stdout.flush()

def profiletime(task_tag, step, times, comm=None, mpiproc=0):
    """
    Record and print the time spent in a pipeline stage.

    Parameters:
    -----------
    task_tag : str or None
        Prefix for the printed line
    step : str
        Name of the stage being timed
    times : dict
        Timing dictionary holding 't0' and the per-stage totals
    comm : MPI communicator or None
        Communicator to synchronize on before reading the clock
    mpiproc : int
        MPI rank; only rank 0 prints

    Returns:
    --------
    times : dict
        Updated timing dictionary
    """
    if comm is not None:
        comm.Barrier()

    stepn = step + '_N'
    dt = time() - times['t0']

    if step in times:
        times[step] += dt
        times[stepn] += 1
    else:
        times[step] = dt
        times[stepn] = 1

    times['t0'] = time()

    if mpiproc != 0:
        return times

    if task_tag is not None:
        parprint(f'{task_tag}: {dt:.3f}s (pass {times[stepn]}, {step})')
    else:
        parprint(f'{step.replace("_", " ").strip().title()}: {dt:.3f}s')

    return times

def summarizetime(task_tag, times, comm=None, mpiproc=0):
    """
    Print the accumulated stage timings, longest first.

    Parameters:
    -----------
    task_tag : str or None
        Heading of the summary
    times : dict
        Timing dictionary filled by profiletime
    comm : MPI communicator or None
        Communicator to synchronize on
    mpiproc : int
        MPI rank; only rank 0 prints
    """
    if comm is not None:
        comm.Barrier()
    if mpiproc != 0:
        return times

    step_times = []
    total_time = 0
    for key in times:
        if key != 't0' and not key.endswith('_N') and key + '_N' in times:
            step_times.append((key.replace('_', ' ').title(), times[key], times[key + '_N']))
            total_time += times[key]

    step_times.sort(key=lambda x: x[1], reverse=True)

    parprint(f"\n{task_tag or 'Timing summary'}:")
    parprint(f"   {'Stage':<30} {'Time (s)':<10} {'Avg/Pass':<12}")
    parprint(f"   {'-'*30} {'-'*10} {'-'*12}")
    for step_name, step_time, passes in step_times:
        parprint(f"   {step_name:<30} {step_time:>8.3f}s   {step_time / passes:>8.3f}s")
    parprint(f"   {'-'*30} {'-'*10} {'-'*12}")
    parprint(f"   {'Total':<30} {total_time:>8.3f}s")
    return times
