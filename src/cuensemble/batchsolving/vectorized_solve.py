"""Low-level batched solves over device-resident problem batches.

These functions allocate the device outputs, pick the kernel matching the
algorithm tag, launch one thread per trajectory and wait for the device.
They return device arrays; :func:`cuensemble.batchsolving.solve_ensemble`
builds host-side solutions on top of them.
"""

from typing import Optional, Tuple
from warnings import warn

import attrs
import numpy as np
from numba import cuda

from cuensemble.CUDAFactory import CUDAFactory
from cuensemble.algorithms.algorithm_tags import (
    GPUERK,
    GPUODEAlgorithm,
    GPUSDEAlgorithm,
    GPUSIEA,
    get_algorithm,
)
from cuensemble.batchsolving.time_grid import (
    ADAPTIVE_EVERYSTEP_MESSAGE,
    TimeGrid,
)
from cuensemble.callbacks import as_discrete_callback
from cuensemble.kernels.base_kernel import RETCODE_NAMES, SUCCESS
from cuensemble.kernels.erk_kernel import ERKKernel
from cuensemble.kernels.sde_kernel import NOISE_MISMATCH_MESSAGE, SDEKernel
from cuensemble.kernels.step_control import PIControllerSettings
from cuensemble.problems.ensemble import (
    ProblemBatch,
    _check_compatible,
    get_device,
    maybe_prefer_blocks,
)
from cuensemble.problems.problems import (
    ODEProblem,
    SDEProblem,
    is_diagonal_noise,
)

#: Upper bound on adaptive steps per trajectory unless overridden with
#: ``max_iters``. Fixed stepping also allows one step per planned stop.
DEFAULT_MAX_ITERS = 1_000_000

#: Launch options accepted alongside the solver keywords.
LAUNCH_KWARGS = ("dt_min", "max_iters", "blocksize", "stream", "controller")


@attrs.define
class BatchResult:
    """Device outputs of one batched solve.

    Attributes
    ----------
    ts
        ``(n_saves, n_trajectories)`` save times.
    us
        ``(n_saves, n_trajectories, n_states)`` saved states.
    retcodes
        ``(n_trajectories,)`` int32 return codes.
    grid
        The plan the kernel walked.
    """

    ts: object = attrs.field(eq=False)
    us: object = attrs.field(eq=False)
    retcodes: object = attrs.field(eq=False)
    grid: TimeGrid = attrs.field(eq=False)


def _warn_unused(kwargs: dict) -> None:
    unused = sorted(set(kwargs) - set(LAUNCH_KWARGS))
    if unused:
        warn(
            f"Ignoring unsupported solver arguments: {', '.join(unused)}.",
            UserWarning,
            stacklevel=3,
        )


def retcode_name(code: int) -> str:
    """Return the readable name of a trajectory return code."""
    return RETCODE_NAMES.get(int(code), f"Unknown({int(code)})")


def warn_failures(retcodes: np.ndarray, stacklevel: int = 3) -> None:
    """Warn with a count per return code when any trajectory failed."""
    retcodes = np.asarray(retcodes)
    failed = np.flatnonzero(retcodes != SUCCESS)
    if not failed.size:
        return
    counts = {}
    for code in retcodes[failed]:
        name = retcode_name(code)
        counts[name] = counts.get(name, 0) + 1
    summary = ", ".join(f"{name}: {n}" for name, n in counts.items())
    warn(
        f"{failed.size} of {retcodes.size} trajectories did not finish "
        f"successfully ({summary}). Their outputs after the failure "
        "are NaN.",
        RuntimeWarning,
        stacklevel=stacklevel,
    )


def check_adaptive_request(prob, saveat, save_everystep: bool) -> None:
    """Reject adaptive solves the kernels cannot serve.

    Raises
    ------
    NotImplementedError
        For SDE problems.
    ValueError
        If ``saveat`` is ``None`` and ``save_everystep`` is ``True``.
    """
    if isinstance(prob, SDEProblem):
        raise NotImplementedError(
            "Adaptive time-stepping is not supported yet with GPUEM."
        )
    if saveat is None and save_everystep:
        raise ValueError(ADAPTIVE_EVERYSTEP_MESSAGE)


def _select_kernel(
    prob,
    alg,
    adaptive: bool,
    callback,
    debug: bool,
    controller: Optional[PIControllerSettings],
) -> CUDAFactory:
    """Return the kernel factory matching ``prob`` and ``alg``.

    Raises
    ------
    TypeError
        If the algorithm does not match the problem type.
    ValueError
        If SIEA is paired with non-diagonal noise, or adaptive stepping is
        requested for a tableau without an error estimate.
    """
    callback = as_discrete_callback(callback)
    condition = callback.condition if callback is not None else None
    affect = callback.affect if callback is not None else None

    if isinstance(prob, SDEProblem):
        if not isinstance(alg, GPUSDEAlgorithm):
            raise TypeError(
                f"{type(alg).__name__} cannot solve an SDEProblem; use GPUEM "
                "or GPUSIEA."
            )
        if isinstance(alg, GPUSIEA) and not is_diagonal_noise(prob):
            raise ValueError(NOISE_MISMATCH_MESSAGE)
        method = "siea" if isinstance(alg, GPUSIEA) else "em"
        return SDEKernel(
            precision=prob.precision,
            n=prob.n_states,
            f=prob.f,
            g=prob.g,
            method=method,
            noise=prob.noise,
            n_noise=prob.n_noise,
            condition=condition,
            affect=affect,
            debug=debug,
        )

    if isinstance(prob, ODEProblem):
        if not isinstance(alg, GPUERK):
            if isinstance(alg, GPUODEAlgorithm):
                raise TypeError(
                    f"No ensemble kernel is available for "
                    f"{type(alg).__name__}."
                )
            raise TypeError(
                f"{type(alg).__name__} cannot solve an ODEProblem; use "
                "GPUTsit5 or GPUERK."
            )
        return ERKKernel(
            precision=prob.precision,
            n=prob.n_states,
            f=prob.f,
            tableau=alg.tableau,
            adaptive=adaptive,
            condition=condition,
            affect=affect,
            controller=controller,
            debug=debug,
        )

    raise TypeError(
        f"Expected an ODEProblem or SDEProblem, got {type(prob).__name__}."
    )


def _allocate_outputs(
    probs: ProblemBatch, grid: TimeGrid, stream
) -> Tuple[object, object, object]:
    """Allocate ``ts`` (filled with ``t0``), ``us`` and the retcodes."""
    precision = probs.precision
    n_trajectories = len(probs)
    host_ts = np.full(
        (grid.n_saves, n_trajectories), grid.t0, dtype=precision
    )
    host_us = np.full(
        (grid.n_saves, n_trajectories, probs.n_states),
        np.nan,
        dtype=precision,
    )
    ts = cuda.to_device(host_ts, stream=stream)
    us = cuda.to_device(host_us, stream=stream)
    retcodes = cuda.to_device(
        np.zeros(n_trajectories, dtype=np.int32), stream=stream
    )
    return ts, us, retcodes


def _default_dt_min(grid: TimeGrid, precision) -> float:
    scale = max(abs(grid.t0), abs(grid.tf), 1.0)
    return 64.0 * float(np.finfo(precision).eps) * scale


def solve_batch(
    probs: ProblemBatch,
    prob,
    alg,
    dt: float,
    saveat=None,
    save_everystep: bool = True,
    adaptive: bool = False,
    abstol: float = 1e-6,
    reltol: float = 1e-3,
    callback=None,
    tstops=None,
    debug: bool = False,
    dt_min: Optional[float] = None,
    max_iters: Optional[int] = None,
    blocksize: int = 256,
    stream=0,
    controller: Optional[PIControllerSettings] = None,
) -> BatchResult:
    """Plan, allocate, launch and wait for one batch.

    This is the shared core of :func:`vectorized_solve` and
    :func:`vectorized_asolve`; it also returns the per-trajectory return
    codes. ``max_iters=None`` allows :data:`DEFAULT_MAX_ITERS` steps, and at
    least one step per planned stop when stepping at fixed ``dt``.

    Raises
    ------
    ValueError
        If ``prob`` cannot share a kernel with the problems in ``probs``.
    """
    if not isinstance(probs, ProblemBatch):
        raise TypeError(
            "probs must be a ProblemBatch; build one with "
            "ProblemBatch.from_problems."
        )
    alg = get_algorithm(alg)
    if prob is None:
        prob = probs[0]
    else:
        _check_compatible(probs[0], prob, 0)
    precision = probs.precision

    factory = _select_kernel(prob, alg, adaptive, callback, debug, controller)
    grid = TimeGrid.build(
        prob.tspan,
        dt,
        saveat=saveat,
        save_everystep=save_everystep,
        tstops=tstops,
        adaptive=adaptive,
        precision=precision,
    )

    device = get_device(probs)
    blocks, threads = maybe_prefer_blocks(device, len(probs), blocksize)
    ts, us, retcodes = _allocate_outputs(probs, grid, stream)
    stops = cuda.to_device(grid.stops, stream=stream)
    save_mask = cuda.to_device(grid.save_mask, stream=stream)
    if dt_min is None:
        dt_min = _default_dt_min(grid, precision)
    if max_iters is None:
        max_iters = DEFAULT_MAX_ITERS
        if not adaptive:
            max_iters = max(max_iters, grid.n_stops)

    if device == "cpu":
        warn("Running the kernel on CPU", UserWarning, stacklevel=3)

    args = (
        probs.u0s,
        probs.ps,
        us,
        ts,
        stops,
        save_mask,
        np.int32(grid.save_start),
        precision(grid.t0),
        precision(dt),
        precision(dt_min),
        precision(abstol),
        precision(reltol),
        np.int64(max_iters),
        retcodes,
    )
    if isinstance(factory, SDEKernel):
        args = args + (probs.rng_states,)

    factory.kernel[blocks, threads, stream](*args)
    if stream == 0:
        cuda.synchronize()
    else:
        stream.synchronize()

    return BatchResult(ts=ts, us=us, retcodes=retcodes, grid=grid)


def vectorized_solve(
    probs: ProblemBatch,
    prob,
    alg,
    *,
    dt: float,
    saveat=None,
    save_everystep: bool = True,
    debug: bool = False,
    callback=None,
    tstops=None,
    **kwargs,
):
    """Fixed-step solve of a batch of ODE or SDE problems.

    Parameters
    ----------
    probs
        The device-resident batch of problems.
    prob
        The representative problem; ``None`` uses ``probs[0]``.
    alg
        Algorithm tag or name. ODEs take :class:`GPUTsit5` or
        :class:`GPUERK`; SDEs take :class:`GPUEM` or :class:`GPUSIEA`.
    dt
        Step size. The final step is shortened to land on ``tspan[1]``.
    saveat
        Save times, or a scalar save interval.
    save_everystep
        With ``saveat=None``, save every step (``True``) or only the start
        and end (``False``).
    debug
        Compile the kernel with debug info.
    callback
        A :class:`DiscreteCallback` or :class:`CallbackSet`.
    tstops
        Times the integrator lands on exactly; with ``save_everystep`` each
        one not already on the grid adds an output entry.
    **kwargs
        Launch options ``dt_min``, ``max_iters``, ``blocksize``, ``stream``.
        Anything else is ignored with a warning.

    Warns
    -----
    RuntimeWarning
        When any trajectory ends with a retcode other than ``Success``.

    Returns
    -------
    tuple
        ``(ts, us)`` device arrays of shapes ``(n_saves, n_trajectories)``
        and ``(n_saves, n_trajectories, n_states)``.
    """
    _warn_unused(kwargs)
    launch = {key: kwargs[key] for key in LAUNCH_KWARGS if key in kwargs}
    result = solve_batch(
        probs,
        prob,
        alg,
        dt=dt,
        saveat=saveat,
        save_everystep=save_everystep,
        adaptive=False,
        callback=callback,
        tstops=tstops,
        debug=debug,
        **launch,
    )
    warn_failures(result.retcodes.copy_to_host())
    return result.ts, result.us


def vectorized_asolve(
    probs: ProblemBatch,
    prob,
    alg,
    *,
    dt: float = 0.1,
    saveat=None,
    save_everystep: bool = False,
    abstol: float = 1e-6,
    reltol: float = 1e-3,
    debug: bool = False,
    callback=None,
    tstops=None,
    **kwargs,
):
    """Adaptive solve of a batch of ODE problems.

    ``dt`` is the initial step. Saving every step is not supported because
    the output length would not be known before launch.

    Raises
    ------
    NotImplementedError
        For SDE problems.
    ValueError
        If ``saveat`` is ``None`` and ``save_everystep`` is ``True``, or the
        tableau has no embedded error estimate.

    Returns
    -------
    tuple
        ``(ts, us)`` device arrays as for :func:`vectorized_solve`.
    """
    if prob is None and isinstance(probs, ProblemBatch):
        prob = probs[0]
    check_adaptive_request(prob, saveat, save_everystep)
    _warn_unused(kwargs)
    launch = {key: kwargs[key] for key in LAUNCH_KWARGS if key in kwargs}
    result = solve_batch(
        probs,
        prob,
        alg,
        dt=dt,
        saveat=saveat,
        save_everystep=save_everystep,
        adaptive=True,
        abstol=abstol,
        reltol=reltol,
        callback=callback,
        tstops=tstops,
        debug=debug,
        **launch,
    )
    warn_failures(result.retcodes.copy_to_host())
    return result.ts, result.us
