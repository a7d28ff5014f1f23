"""
Attribute-filtered fan-out on top of Redis Streams.

``FanOutTopic`` delivers a message to every subscribed queue whose filter
policy matches the message attributes. ``EventBus`` does the same for
JSON events, matching rules against top-level event fields.
"""

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

import structlog

from appointment_router.messaging.broker import EventBroker
from appointment_router.messaging.mapper import StreamMessage

logger = structlog.get_logger(__name__)

FilterPolicy = Mapping[str, Iterable[str]]


def policy_matches(policy: FilterPolicy, values: Mapping[str, Any]) -> bool:
    """
    Check a filter policy against a set of values.

    Every key of the policy must be present in ``values`` and its value must be
    exactly one of the allowed values. An empty policy matches everything.
    """
    for key, allowed in policy.items():
        if key not in values or values[key] not in set(allowed):
            return False
    return True


@dataclass(frozen=True)
class Subscription:
    """Queue subscribed to a topic with an attribute filter policy."""

    queue: str
    filter_policy: FilterPolicy

    def matches(self, attributes: Mapping[str, Any]) -> bool:
        return policy_matches(self.filter_policy, attributes)


class FanOutTopic:
    """Topic that copies each message into the matching subscribed queues."""

    def __init__(self, name: str, broker: EventBroker, subscriptions: list[Subscription] | None = None):
        self.name = name
        self.broker = broker
        self.subscriptions: list[Subscription] = list(subscriptions or [])

    def subscribe(self, queue: str, filter_policy: FilterPolicy) -> Subscription:
        subscription = Subscription(queue=queue, filter_policy=filter_policy)
        self.subscriptions.append(subscription)
        return subscription

    def matching_queues(self, attributes: Mapping[str, Any]) -> list[str]:
        return [s.queue for s in self.subscriptions if s.matches(attributes)]

    async def publish(self, message: StreamMessage) -> list[str]:
        """
        Deliver a message to every matching queue.

        Returns:
            Queues the message was delivered to
        """
        queues = self.matching_queues(message.attributes)
        fields = message.to_fields()

        for queue in queues:
            await self.broker.publish(queue, fields)

        if not queues:
            logger.warning("topic_message_unrouted", topic=self.name, attributes=message.attributes)
        else:
            logger.info("topic_message_delivered", topic=self.name, queues=queues)

        return queues


@dataclass(frozen=True)
class EventRule:
    """Event-bus rule: an event pattern and the queue it targets."""

    name: str
    event_pattern: FilterPolicy
    target: str

    def matches(self, event: Mapping[str, Any]) -> bool:
        return policy_matches(self.event_pattern, event)


class EventBus:
    """
    Event bus backed by a stream.

    Every event is appended to the bus stream and then routed to the target
    queue of each matching rule as ``{"event": <json>}``.
    """

    def __init__(self, stream: str, broker: EventBroker, rules: list[EventRule] | None = None):
        self.stream = stream
        self.broker = broker
        self.rules: list[EventRule] = list(rules or [])

    def add_rule(self, rule: EventRule) -> None:
        self.rules.append(rule)

    async def put_event(self, event: dict[str, Any]) -> list[str]:
        """
        Record and route an event.

        Returns:
            Target queues the event was delivered to
        """
        fields = {"event": json.dumps(event)}
        await self.broker.publish(self.stream, fields)

        targets = [rule.target for rule in self.rules if rule.matches(event)]
        for target in targets:
            await self.broker.publish(target, fields)

        logger.info(
            "event_routed",
            source=event.get("source"),
            detail_type=event.get("detail-type"),
            targets=targets,
        )
        return targets
