"""
mock_notification_worker.py — Mock Notification Worker (RabbitMQ Consumer)

This module simulates the downstream worker that reacts to `orders.created` events
published by the storefront service (order confirmation email, SMS, WhatsApp message).

Purpose:
    • Verify that events carry the persisted, server-priced order
    • Provide a local consumer for end-to-end runs

Communication Channels:
    - Input Queue: 'orders.created' ← Receives order events
"""

import json
import logging
import os
import time

import pika

logging.basicConfig(level=logging.INFO)
RABBITMQ_HOST = os.environ.get("RABBITMQ_HOST", "localhost")
RABBITMQ_USER = os.environ.get("RABBITMQ_USER", "storefront")
RABBITMQ_PASSWORD = os.environ.get("RABBITMQ_PASSWORD", "storefront")
QUEUE = os.environ.get("ORDER_EVENTS_QUEUE", "orders.created")


def get_mq_connection():
    """
    Establishes and returns a connection to the RabbitMQ message broker.

    Raises:
        pika.exceptions.AMQPConnectionError: If the broker is unavailable.
    """
    credentials = pika.PlainCredentials(RABBITMQ_USER, RABBITMQ_PASSWORD)
    return pika.BlockingConnection(
        pika.ConnectionParameters(host=RABBITMQ_HOST, credentials=credentials)
    )


def on_order_created(ch, method, properties, body):
    """
    Callback triggered for each `orders.created` event.

    Logs the notification that a real worker would send and acknowledges the
    message. Malformed messages are rejected without requeue (dead letter queue).
    """
    try:
        event = json.loads(body)
        order = event["order"]
        items = ", ".join(f"{i['product_name']} x{i['quantity']}" for i in order["items"])
        logging.info(
            f"[NOTIFY] Order {order['id'][:8]} for {order['customer_name']} "
            f"({order['customer_phone']}): {items}. Total ৳{order['total_amount']}"
        )
        ch.basic_ack(delivery_tag=method.delivery_tag)
    except (json.JSONDecodeError, KeyError, TypeError) as e:
        logging.error(f"[NOTIFY] Invalid order event: {e}")
        ch.basic_nack(delivery_tag=method.delivery_tag, requeue=False)


def main():
    """
        Starts the consumer loop; reconnects every 5 seconds if the broker is unavailable.
    """
    logging.info("Mock notification worker starting...")
    while True:
        try:
            connection = get_mq_connection()
            channel = connection.channel()
            channel.queue_declare(queue=QUEUE, durable=True)

            logging.info(f"[NOTIFY] Waiting for events on '{QUEUE}'.")
            channel.basic_consume(queue=QUEUE, on_message_callback=on_order_created)
            channel.start_consuming()
        except pika.exceptions.AMQPConnectionError as e:
            logging.warning(f"MQ connection failed, retrying in 5s... {e}")
            time.sleep(5)
        except KeyboardInterrupt:
            break


if __name__ == '__main__':
    main()
