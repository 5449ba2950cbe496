#!/usr/bin/env python3
"""
Human State Estimation Runner

Runs the estimation stack on a static standing sequence:
- Inverse kinematics from IMU orientations
- External wrench estimation from shoe wrenches
- Joint torque estimation
"""

import argparse
import logging
import time
from pathlib import Path

import numpy as np

from biomechanical_analysis.config import load_config
from biomechanical_analysis.dynamics import HumanID, WrenchSourceType
from biomechanical_analysis.ik import HumanIK, NodeData, TaskKind
from biomechanical_analysis.utils import HumanModel


def standing_wrenches(human_id: HumanID, human_mass: float, gravity: np.ndarray) -> dict:
    """Body weight shared among the measured wrench sources"""
    frames = [s.output_frame for s in human_id.wrench_sources.sources
              if s.type == WrenchSourceType.FIXED]
    wrenches = {}
    for frame in frames:
        force = -human_mass * gravity / max(len(frames), 1)
        wrenches[frame] = np.concatenate([force, np.zeros(3)])
    return wrenches


def main():
    """Main estimation loop"""
    parser = argparse.ArgumentParser(description='Human State Estimation')
    parser.add_argument('--urdf', type=str, required=True, help='Human model URDF')
    parser.add_argument('--config', type=str,
                        default=str(Path(__file__).parent.parent / 'config' / 'human_estimation.yaml'),
                        help='Estimation configuration')
    parser.add_argument('--wrench-urdf', type=str, default=None,
                        help='Reduced model for the external wrench stage')
    parser.add_argument('--duration', type=float, default=2.0, help='Sequence duration (seconds)')
    parser.add_argument('--dt', type=float, default=0.01, help='Integration step (seconds)')
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    print("=" * 60)
    print("Human State Estimation")
    print("=" * 60)

    config = load_config(args.config)
    print(f"Loaded configuration: {args.config}")

    human_model = HumanModel.from_urdf(args.urdf)
    wrench_model = HumanModel.from_urdf(args.wrench_urdf or args.urdf,
                                        base_link=human_model.floating_base)

    ik = HumanIK()
    if not ik.initialize(config, human_model) or not ik.set_dt(args.dt):
        raise SystemExit("Inverse kinematics initialization failed")

    human_id = HumanID()
    if not human_id.initialize(config, human_model, wrench_model):
        raise SystemExit("Inverse dynamics initialization failed")

    orientation_nodes = ik.registry.node_ids(TaskKind.ORIENTATION) + ik.registry.node_ids(TaskKind.GRAVITY)
    node_data = {node: NodeData(I_R_IMU=np.eye(3)) for node in orientation_nodes}
    wrenches = standing_wrenches(human_id, human_id.human_mass, human_model.get_gravity())

    print(f"\nDoFs: {ik.get_dofs_number()}")
    print(f"Orientation nodes: {orientation_nodes}")
    print(f"Duration: {args.duration:.1f} s, dt: {args.dt:.3f} s")
    print("\n" + "-" * 60)

    start_time = time.time()
    n_steps = int(args.duration / args.dt)
    print_interval = max(n_steps // 10, 1)
    failures = 0

    for step in range(n_steps):
        ok = ik.update_orientation_and_gravity_tasks(node_data)
        ok = ok and ik.advance()
        ok = ok and human_id.update_ext_wrenches_measurements(wrenches)
        ok = ok and human_id.solve()
        if not ok:
            failures += 1
            continue

        if step % print_interval == 0:
            torques = human_id.get_joint_torques()
            base = ik.get_base_position()
            print(f"Step: {step:5d} | "
                  f"Base: [{base[0]:5.2f}, {base[1]:5.2f}, {base[2]:5.2f}] | "
                  f"|tau|: {np.linalg.norm(torques):7.2f} Nm")

    wall_time = time.time() - start_time

    print("\n" + "=" * 60)
    print("Estimation Complete")
    print("=" * 60)
    print(f"Wall time: {wall_time:.2f} s")
    print(f"Steps: {n_steps} ({failures} failed)")
    print(f"Avg cycle time: {1000.0 * wall_time / max(n_steps, 1):.3f} ms")
    print(f"QP statistics: {ik.qp.get_statistics()}")


if __name__ == "__main__":
    main()
