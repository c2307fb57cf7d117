"""Ensemble definitions and their device-resident batched form."""

from math import ceil
from typing import Callable, Optional, Sequence, Tuple

import attrs
import numpy as np
from numba import cuda
from numba.cuda.random import create_xoroshiro128p_states

from cuensemble.cuda_simsafe import device_kind, is_cuda_array
from cuensemble.problems.problems import ODEProblem, SDEProblem, remake

#: Threads per block used on hardware.
DEFAULT_BLOCKSIZE = 256
#: Threads per block used by the simulator, where every thread is a Python
#: thread.
SIMULATOR_BLOCKSIZE = 32


def _default_prob_func(prob, i, repeat):
    return prob


def _default_output_func(sol, i):
    return sol, False


@attrs.define
class EnsembleProblem:
    """A family of problems derived from one representative problem.

    Attributes
    ----------
    prob
        The representative problem.
    prob_func
        ``prob_func(prob, i, repeat)`` returning the problem for trajectory
        ``i``; typically built with :func:`remake`. Defaults to returning
        ``prob`` unchanged.
    output_func
        ``output_func(sol, i)`` returning ``(value, rerun)``. The value
        replaces the trajectory solution in the ensemble result. Rerunning
        is not supported on the GPU and ``rerun`` must be ``False``.
    safetycopy
        When ``True``, ``prob_func`` receives a fresh copy of ``prob`` for
        every trajectory.
    """

    prob: ODEProblem = attrs.field(
        validator=attrs.validators.instance_of((ODEProblem, SDEProblem))
    )
    prob_func: Callable = attrs.field(default=_default_prob_func)
    output_func: Callable = attrs.field(default=_default_output_func)
    safetycopy: bool = attrs.field(default=True)

    def problems(self, start: int, stop: int) -> Tuple:
        """Return the problems for trajectories ``start`` to ``stop - 1``."""
        problems = []
        for i in range(start, stop):
            base = remake(self.prob) if self.safetycopy else self.prob
            problems.append(self.prob_func(base, i, 1))
        return tuple(problems)


def _check_compatible(reference, candidate, index: int) -> None:
    if type(candidate) is not type(reference):
        raise ValueError(
            f"Problem {index} is a {type(candidate).__name__}, but the batch "
            f"holds {type(reference).__name__}s."
        )
    if candidate.f is not reference.f:
        raise ValueError(
            f"Problem {index} uses a different drift function; a batch "
            "compiles a single kernel and needs one function."
        )
    if candidate.tspan != reference.tspan:
        raise ValueError(
            f"Problem {index} has tspan {candidate.tspan}, expected "
            f"{reference.tspan}."
        )
    if candidate.precision is not reference.precision:
        raise ValueError(
            f"Problem {index} has precision {candidate.precision.__name__}, "
            f"expected {reference.precision.__name__}."
        )
    if (
        candidate.n_states != reference.n_states
        or candidate.n_params != reference.n_params
    ):
        raise ValueError(
            f"Problem {index} has {candidate.n_states} states and "
            f"{candidate.n_params} parameters, expected "
            f"{reference.n_states} and {reference.n_params}."
        )
    if isinstance(reference, SDEProblem):
        if (
            candidate.g is not reference.g
            or candidate.noise != reference.noise
            or candidate.n_noise != reference.n_noise
        ):
            raise ValueError(
                f"Problem {index} has a different diffusion or noise "
                "structure from the rest of the batch."
            )
        if candidate.seed != reference.seed:
            raise ValueError(
                f"Problem {index} has seed {candidate.seed}, expected "
                f"{reference.seed}; a batch draws all of its noise from one "
                "seed."
            )


def _device_array_validator(instance, attribute, value) -> None:
    if not is_cuda_array(value):
        raise TypeError(
            f"{attribute.name} must be a device array; build batches with "
            "ProblemBatch.from_problems."
        )


@attrs.define
class ProblemBatch:
    """Problems stacked into device arrays, one row per trajectory.

    This is the form kernels consume: ``u0s`` is ``(n, n_states)`` and
    ``ps`` is ``(n, max(n_params, 1))``. SDE batches also carry one
    xoroshiro128p state per trajectory.
    """

    problems: Tuple = attrs.field()
    u0s: object = attrs.field(eq=False, validator=_device_array_validator)
    ps: object = attrs.field(eq=False, validator=_device_array_validator)
    rng_states: Optional[object] = attrs.field(default=None, eq=False)

    @classmethod
    def from_problems(
        cls,
        problems: Sequence,
        stream=0,
        subsequence_start: int = 0,
        seed: Optional[int] = None,
    ) -> "ProblemBatch":
        """Stack ``problems`` and copy them to the device.

        Parameters
        ----------
        problems
            Problems sharing functions, tspan, precision and sizes.
        stream
            CUDA stream used for the transfers.
        subsequence_start
            Offset of the first trajectory in the random streams, so that a
            trajectory draws the same noise however the ensemble is split
            into batches.
        seed
            Seed for the random streams of an SDE batch. Defaults to the
            problems' shared ``seed``, or a fresh numpy draw when that is
            ``None``.

        Raises
        ------
        ValueError
            If ``problems`` is empty or the problems are incompatible.
        """
        problems = tuple(problems)
        if not problems:
            raise ValueError("A batch needs at least one problem.")
        reference = problems[0]
        for index, candidate in enumerate(problems[1:], start=1):
            _check_compatible(reference, candidate, index)

        precision = reference.precision
        n_params = max(reference.n_params, 1)
        host_u0s = np.stack([prob.u0 for prob in problems]).astype(precision)
        host_ps = np.zeros((len(problems), n_params), dtype=precision)
        if reference.n_params:
            host_ps[:] = np.stack([prob.typed_p for prob in problems])

        rng_states = None
        if isinstance(reference, SDEProblem):
            if seed is None:
                seed = reference.seed
            if seed is None:
                seed = int(np.random.randint(0, 2**31 - 1))
            rng_states = create_xoroshiro128p_states(
                len(problems),
                seed=seed,
                subsequence_start=subsequence_start,
                stream=stream,
            )

        return cls(
            problems=problems,
            u0s=cuda.to_device(host_u0s, stream=stream),
            ps=cuda.to_device(host_ps, stream=stream),
            rng_states=rng_states,
        )

    def __len__(self) -> int:
        return len(self.problems)

    def __getitem__(self, index):
        return self.problems[index]

    @property
    def precision(self) -> type:
        return self.problems[0].precision

    @property
    def n_states(self) -> int:
        return self.problems[0].n_states


def get_device(probs: ProblemBatch) -> str:
    """Return ``"cpu"`` under the CUDA simulator and ``"cuda"`` otherwise."""
    return device_kind()


def maybe_prefer_blocks(
    device: str, n_trajectories: int, blocksize: int = DEFAULT_BLOCKSIZE
) -> Tuple[int, int]:
    """Return ``(blocks, threads_per_block)`` covering ``n_trajectories``.

    On the simulator the block is kept small, since each simulated thread
    is a Python thread and a large mostly-idle block only adds overhead.
    """
    if device == "cpu":
        blocksize = min(blocksize, SIMULATOR_BLOCKSIZE)
    threads = max(1, min(int(blocksize), n_trajectories))
    blocks = int(ceil(n_trajectories / threads))
    return blocks, threads
