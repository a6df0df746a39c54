"""Performance benchmarking of the geodesic shooting kernels and the medial fit."""

import statistics
import time
from collections.abc import Callable
from typing import Any

import jax
import jax.numpy as jnp
import numpy as np


def benchmark_function(
    function: Callable[[], Any], name: str, warmup_runs: int = 2, timing_runs: int = 5
) -> dict[str, float]:
    """Time a function after JIT warm-up.

    Args:
        function: Work to time; its result is blocked on when it is a JAX array
        name: Descriptive name for benchmark
        warmup_runs: JIT warm-up iterations
        timing_runs: Measurement iterations

    Returns:
        Dictionary with timing statistics
    """
    print(f"\n=== Benchmarking {name} ===")

    # Warm-up for JIT compilation
    for _ in range(warmup_runs):
        jax.block_until_ready(function())

    times = []
    for i in range(timing_runs):
        import gc

        gc.collect()

        start = time.perf_counter()
        jax.block_until_ready(function())
        times.append(time.perf_counter() - start)
        print(f"  Run {i + 1}: {times[-1] * 1000:.2f} ms")

    results = {
        "mean": statistics.mean(times),
        "std": statistics.stdev(times) if len(times) > 1 else 0.0,
        "min": min(times),
        "max": max(times),
    }
    print(f"  Mean: {results['mean'] * 1000:.2f} ± {results['std'] * 1000:.2f} ms")
    print(f"  Backend: {jax.default_backend()}")
    return results


def _random_landmarks(k: int, seed: int = 0):
    rng = np.random.default_rng(seed)
    q0 = jnp.asarray(rng.uniform(-1.0, 1.0, size=(k, 3)))
    p0 = jnp.asarray(0.05 * rng.standard_normal((k, 3)))
    return q0, p0


def benchmark_flow_scaling():
    """Forward flow and adjoint pass for growing landmark counts."""
    from jaxcmrep import HamiltonianSystem

    sizes = [16, 64, 256]
    results = {}

    print("\n=== Flow / adjoint scaling ===")
    for k in sizes:
        q0, p0 = _random_landmarks(k)
        system = HamiltonianSystem(q0, 0.5, 40)
        alpha = jnp.ones_like(q0)

        def forward_backward(system=system, p0=p0, alpha=alpha):
            traj = system.flow_hamiltonian(p0)
            return system.flow_gradient_backward(traj, alpha)

        results[k] = benchmark_function(forward_backward, f"{k} landmarks", warmup_runs=1, timing_runs=3)

    print(f"\n{'Landmarks':<10} {'Time (ms)':<12} {'us/pair':<10}")
    for k, result in results.items():
        print(f"{k:<10} {result['mean'] * 1000:<12.2f} {result['mean'] / (k * k) * 1e6:<10.3f}")
    return results


def benchmark_octahedron_fit():
    """Full augmented Lagrangian fit of the octahedral example."""
    from example_medial_fit import solve_octahedron_example

    from jaxcmrep import Verbosity

    def fit():
        solver, _ = solve_octahedron_example(verbose=Verbosity.SILENT)
        return jnp.asarray(solver.get_solution())

    return benchmark_function(fit, "Octahedron fit", warmup_runs=1, timing_runs=3)


if __name__ == "__main__":
    print("jaxcmrep Performance Benchmarking")
    print("=" * 50)

    benchmark_flow_scaling()
    benchmark_octahedron_fit()
