#!/usr/bin/env python3
"""
Registry Load Benchmark

Times ``CaptchaRegistry.load_from_models_dir`` over repeated runs to measure
startup cost of loading every challenge model.
"""

import argparse
import json
import time
from typing import Dict, List, Optional

import numpy as np

from nocaptcha import CaptchaRegistry


def run_benchmark(models_dir: str, iterations: int, workers: Optional[int]) -> Dict:
    """Load (and close) the registry ``iterations`` times."""
    durations: List[float] = []
    num_models = 0

    for i in range(iterations):
        start = time.perf_counter()
        registry = CaptchaRegistry.load_from_models_dir(models_dir, max_workers=workers)
        durations.append(time.perf_counter() - start)

        num_models = len(registry)
        registry.close()
        print(f"Run {i + 1}/{iterations}: {durations[-1]:.2f}s ({num_models} models)")

    durations_np = np.array(durations)
    return {
        "iterations": iterations,
        "models": num_models,
        "workers": workers,
        "mean": float(np.mean(durations_np)),
        "median": float(np.median(durations_np)),
        "p90": float(np.percentile(durations_np, 90)),
        "min": float(np.min(durations_np)),
        "max": float(np.max(durations_np)),
    }


def main():
    parser = argparse.ArgumentParser(description='Load All Models benchmark')
    parser.add_argument('--models-dir', default='models', help='Models root directory')
    parser.add_argument('--iterations', type=int, default=10, help='Number of loads')
    parser.add_argument('--workers', type=int, default=None, help='Loader threads')
    parser.add_argument('--output', default=None, help='Optional JSON output file')

    args = parser.parse_args()

    results = run_benchmark(args.models_dir, args.iterations, args.workers)

    print("\nLoad Time (seconds):")
    for key in ("mean", "median", "p90", "min", "max"):
        print(f"  {key}: {results[key]:.3f}")

    if args.output:
        with open(args.output, 'w') as f:
            json.dump(results, f, indent=2)
        print(f"Results saved to {args.output}")


if __name__ == '__main__':
    main()
