#!/usr/bin/env python3
"""
Run all V2X handover scenarios with a handover agent and print KPI summaries
"""

import glob
import os
import sys
import logging
from pathlib import Path

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

# Add app directory to path
sys.path.insert(0, str(Path(__file__).parent))

from v2xsim import V2XEnvironment, run_episode
from v2xsim.network import HANDOVER_TYPE_NAMES
from handover_agent import DDQNAgent, RandomAgent

DEFAULT_SCENARIOS_DIR = str(Path(__file__).parent / 'scenarios')


def load_scenarios_from_directory(scenarios_dir: str = DEFAULT_SCENARIOS_DIR, base_seed: int = 42):
    """
    Load all scenario files from directory

    Returns:
        List of scenario configs with name and seed
    """
    scenario_files = sorted(glob.glob(os.path.join(scenarios_dir, '*.json')))

    suite = []
    for scenario_file in scenario_files:
        suite.append({'name': Path(scenario_file).stem, 'seed': base_seed})

    return suite


def create_agent(kind: str, seed: int, config_path: str = None):
    if kind == 'random':
        return RandomAgent(seed=seed)
    return DDQNAgent(config_path=config_path)


def run_scenario(scenario: str, seed: int, agent, scenarios_dir: str = None, episodes: int = 1,
                 train: bool = True, max_steps: int = None):
    """Run a scenario for a number of episodes; returns the last episode's environment and results"""

    env = V2XEnvironment(scenario=scenario, seed=seed, scenarios_dir=scenarios_dir)

    # Skip scenario if simTime is 0 or negative
    if env.sim_params.sim_time <= 0:
        print(f'Skipping scenario {scenario}: simTime={env.sim_params.sim_time}')
        return env, env.get_results()

    results = None
    for episode in range(1, episodes + 1):
        results = run_episode(env, agent, train=train, max_steps=max_steps)
        print(f'  Episode {episode}/{episodes}: avg reward {results["avg_reward"]:.4f}, '
              f'PDR {results["avg_pdr"]:.3f}, handovers {results["total_handovers"]}')

    return env, results


def print_results(name: str, results: dict):
    print(f'\nResults for {name}:')
    print(f'  Avg reward:      {results["avg_reward"]:.4f}')
    print(f'  Safety PDR:      {results["avg_pdr"]:.3f}')
    print(f'  Latency:         {results["avg_latency"] * 1000:.1f} ms')
    print(f'  Throughput:      {results["avg_throughput"] / 1e6:.2f} Mb/s')
    print(f'  Handovers:       {results["total_handovers"]} '
          f'(ping-pong ratio {results["ping_pong_ratio"] * 100:.1f}%)')
    for type_name in HANDOVER_TYPE_NAMES.values():
        print(f'    {type_name:<14} {results["handover_counts"][type_name]}')


def print_baseline_comparison(results: dict, baseline: dict):
    print('\n  Agent vs random baseline:')
    for key, label in (('avg_reward', 'Reward'), ('avg_pdr', 'PDR'),
                       ('avg_latency', 'Latency (s)'), ('avg_throughput', 'Throughput (b/s)'),
                       ('total_handovers', 'Handovers'), ('ping_pong_ratio', 'Ping-pong ratio')):
        delta = results[key] - baseline[key]
        print(f'    {label:<18} {results[key]:>12.4f} {baseline[key]:>12.4f} ({delta:+.4f})')


def save_metric_plots(env: V2XEnvironment, name: str, plots_dir: str = 'plots'):
    """Per-step mean KPIs over the episode"""

    fields = [('safety_pdr', 'Safety PDR'), ('latency', 'Latency (s)'),
              ('throughput', 'Throughput (b/s)'), ('reward', 'Reward')]

    fig, axes = plt.subplots(2, 2, figsize=(12, 8))
    fig.suptitle(f'{name} - per-step vehicle means', fontsize=14)

    for ax, (field, label) in zip(axes.flat, fields):
        series = env.metrics.time_series(field)
        ax.plot(series['time'], series['value'], linewidth=1)
        ax.set_title(label)
        ax.set_xlabel('Time (s)')
        ax.grid(True, alpha=0.3)

    plt.tight_layout()
    os.makedirs(plots_dir, exist_ok=True)
    out_path = os.path.join(plots_dir, f'{name}_metrics.png')
    plt.savefig(out_path, dpi=150, bbox_inches='tight')
    plt.close()
    print(f'  Plot saved to {out_path}')


def main(scenarios_dir: str = DEFAULT_SCENARIOS_DIR, base_seed: int = 42, agent_kind: str = 'ddqn',
         episodes: int = 1, baseline: bool = False, max_steps: int = None, plots_dir: str = 'plots',
         config_path: str = None):
    """Run every scenario in the directory"""

    suite = load_scenarios_from_directory(scenarios_dir, base_seed)

    if not suite:
        print(f'Error: No scenario files found in {scenarios_dir}/')
        return

    print(f'\n=== Running V2X Handover Suite ({len(suite)} scenarios) ===\n')

    summary = []
    for i, scenario_config in enumerate(suite, 1):
        name = scenario_config['name']
        seed = scenario_config['seed']

        print(f'\n--- Scenario {i}/{len(suite)}: {name} ---')

        try:
            agent = create_agent(agent_kind, seed, config_path)
            env, results = run_scenario(name, seed, agent, scenarios_dir=scenarios_dir,
                                        episodes=episodes, train=True, max_steps=max_steps)
            print_results(name, results)

            if baseline:
                _, baseline_results = run_scenario(name, seed, RandomAgent(seed=seed),
                                                   scenarios_dir=scenarios_dir, train=False,
                                                   max_steps=max_steps)
                print_baseline_comparison(results, baseline_results)

            if plots_dir:
                save_metric_plots(env, name, plots_dir)
            if isinstance(agent, DDQNAgent):
                agent.save_model()

            summary.append((name, results['avg_reward']))

        except Exception as e:
            print(f'Error in scenario {name}: {e}')
            import traceback
            traceback.print_exc()
            summary.append((name, 0.0))

    print('\nAverage reward per scenario:')
    for i, (name, reward) in enumerate(summary, 1):
        print(f'  Scenario {i} ({name}): {reward:.4f}')


if __name__ == '__main__':
    import argparse

    parser = argparse.ArgumentParser(description='Run V2X handover scenarios with an agent')
    parser.add_argument('--scenarios-dir', type=str, default=DEFAULT_SCENARIOS_DIR,
                        help='Directory containing scenario files (default: app/scenarios)')
    parser.add_argument('--base-seed', type=int, default=42,
                        help='Base seed for scenarios (default: 42)')
    parser.add_argument('--agent', choices=['ddqn', 'random'], default='ddqn',
                        help='Agent driving the handover decisions (default: ddqn)')
    parser.add_argument('--episodes', type=int, default=1,
                        help='Episodes per scenario (default: 1)')
    parser.add_argument('--baseline', action='store_true',
                        help='Also run a random-agent baseline and print the deltas')
    parser.add_argument('--max-steps', type=int, default=None,
                        help='Stop each episode after this many steps')
    parser.add_argument('--plots-dir', type=str, default='plots',
                        help='Directory for metric plots (empty string disables)')
    parser.add_argument('--config', type=str, default=None,
                        help='Agent YAML config (default: app/config.yaml)')
    parser.add_argument('--log-level', type=str, default='WARNING',
                        help='Logging level for the simulation core (default: WARNING)')

    args = parser.parse_args()
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.WARNING),
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    main(scenarios_dir=args.scenarios_dir, base_seed=args.base_seed, agent_kind=args.agent,
         episodes=args.episodes, baseline=args.baseline, max_steps=args.max_steps,
         plots_dir=args.plots_dir, config_path=args.config)
