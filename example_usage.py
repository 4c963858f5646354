# Complete Example: Simulated Tello Fleet
# File: example_usage.py

"""
This example demonstrates the simulator workflow end to end:
1. Start the engine (seeds tello-1..tello-4)
2. Subscribe to status notifications
3. Connect two drones
4. Fly both concurrently, one with a zone action
5. Inspect final state
"""

import asyncio

from drone_simulator import (
    CallbackSubscriber,
    SimulatorConfig,
    SimulatorEngine,
)

async def main():
    """Main example execution"""

    print("="*70)
    print("Tello Fleet Simulator - Example")
    print("="*70)
    print()

    # ========================================================================
    # STEP 1: Start the engine
    # ========================================================================
    print("Step 1: Starting simulator engine...")
    engine = SimulatorEngine(SimulatorConfig(command_interval=0.1))
    engine.start()

    for drone in engine.list_vehicles():
        print(f"  {drone['id']} at {drone['ip']} (range {drone['range']})")
    print()

    # ========================================================================
    # STEP 2: Subscribe to notifications
    # ========================================================================
    def on_status(message):
        drone = message['drone']
        pos = drone['position']
        print(f"  [{drone['id']}] {drone['status']:<28} "
              f"yaw={drone['yaw']:<4} pos=({pos['x']:.1f}, {pos['y']:.1f}, {pos['z']:.1f})")

    engine.publisher.add_subscriber(CallbackSubscriber(on_status))

    # ========================================================================
    # STEP 3: Connect drones
    # ========================================================================
    print("Step 3: Connecting tello-1 and tello-2...")
    engine.connect("tello-1")
    engine.connect("tello-2")
    print()

    # ========================================================================
    # STEP 4: Fly
    # ========================================================================
    print("Step 4: Flying...")
    engine.submit_flight_path(
        "tello-1",
        ["takeoff", "cw 90", "forward 100", "land"]
    )
    engine.submit_flight_path(
        "tello-2",
        ["takeoff", "streamon", "action survey", "forward 50", "land"],
        zones={"survey": {"script": "up 20\ncw 45\nrecord 5\nwait 300"}}
    )

    await asyncio.gather(
        engine.wait_for_flight("tello-1"),
        engine.wait_for_flight("tello-2")
    )
    print()

    # ========================================================================
    # STEP 5: Final state
    # ========================================================================
    print("Step 5: Final state")
    for drone_id in ("tello-1", "tello-2"):
        info = engine.get_vehicle_info(drone_id).to_dict()
        print(f"  {drone_id}: status={info['status']} yaw={info['yaw']} "
              f"position={info['position']}")

    await engine.stop()

if __name__ == "__main__":
    asyncio.run(main())
