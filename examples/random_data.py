from membench import Client, ClientConfig, Point, WriteOptions
import random
import time


def example(url: str = 'http://localhost:9000'):
    config = ClientConfig(url=url, bucket='random_trades')
    options = WriteOptions(
        batch_size=100,        # Send once 100 rows are pending
        flush_interval=5000,   # ... or once the oldest is 5s old
        max_queue_size=1000)   # Block the writer beyond 1000 queued rows
    with Client(config) as client:
        write_api = client.create_write_api(options)
        total_rows = 0
        try:
            print("Ctrl^C to terminate...")
            while True:
                time.sleep(random.randint(0, 750) / 1000)  # sleep up to 750 ms

                print('Inserting row...')
                write_api.write(
                    Point('trades')
                        .tag('src', random.choice(('ALPHA', 'BETA', 'OMEGA')))
                        .tag('dst', random.choice(('ALPHA', 'BETA', 'OMEGA')))
                        .field('price', random.randint(200, 500))
                        .field('qty', random.randint(1, 5))
                        .at(time.time_ns()))
                total_rows += 1

                if write_api.pending == 0:
                    print(f'Rows sent so far: {write_api.written}')

        except KeyboardInterrupt:
            print(f"total rows queued: {total_rows}")
            print("bye!")


if __name__ == '__main__':
    example()
