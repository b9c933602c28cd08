import argparse
import asyncio
import os
import tempfile
import time

from wish_lantern import open_board, sqlite_store_factory


async def run_benchmark(num_wishes: int, polling_interval: float):
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = os.path.join(tmpdir, "bench.db")
        async with sqlite_store_factory(db_path, polling_interval=polling_interval) as writer_store, \
                sqlite_store_factory(db_path, polling_interval=polling_interval) as reader_store:
            async with open_board(writer_store) as writer, open_board(reader_store) as reader:
                # --- Submit benchmark ---
                start_submit = time.perf_counter()
                submitted = [await writer.submit(f"wish {i}") for i in range(num_wishes)]
                submit_time = time.perf_counter() - start_submit

                # --- Propagation benchmark: until the other client has every wish ---
                start_sync = time.perf_counter()
                while reader.total_count < num_wishes:
                    await asyncio.sleep(0.01)
                sync_time = time.perf_counter() - start_sync

                # --- Burn benchmark ---
                start_burn = time.perf_counter()
                for wish in submitted:
                    await writer.burn(wish.id)
                while reader.active_wishes:
                    await asyncio.sleep(0.01)
                burn_time = time.perf_counter() - start_burn

    print(f"\n--- Results for {num_wishes} wishes (polling every {polling_interval}s) ---")
    print(f"Submit: {submit_time:.4f}s ({num_wishes / submit_time:,.0f} wishes/s)")
    print(f"Propagation to second client after last submit: {sync_time:.4f}s")
    print(f"Burn all and observe on second client: {burn_time:.4f}s")


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--num-wishes", type=int, default=500)
    parser.add_argument("--polling-interval", type=float, default=0.05)
    args = parser.parse_args()
    asyncio.run(run_benchmark(args.num_wishes, args.polling_interval))


if __name__ == "__main__":
    main()
