from membench import Client, Point, WriteOptions
from questdb.ingress import IngressError
import sys


def example():
    try:
        # Reads QUESTDB_URL, QUESTDB_TOKEN, QUESTDB_ORG and QUESTDB_BUCKET.
        with Client.from_env() as client:
            write_api = client.create_write_api(WriteOptions(batch_size=500))

            # Rows are queued and sent in the background once 500 are
            # pending or once the oldest pending row is 1s old.
            write_api.write(
                Point('trades')
                    .tag('symbol', 'ETH-USD')
                    .tag('side', 'sell')
                    .field('price', 2615.54)
                    .field('amount', 0.00044))

            # You can flush manually at any point.
            write_api.flush()

        # Any remaining pending rows are sent when the `with` block ends.

    except IngressError as e:
        sys.stderr.write(f'Got error: {e}\n')


if __name__ == '__main__':
    example()
