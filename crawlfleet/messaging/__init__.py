"""
Outbound stream: page messages, the broker connection, publisher and consumer.
"""

from .messages import PageResult
from .broker import BrokerConnection, Delivery
from .publisher import Publisher
from .consumer import Consumer, ConsumeStats

__all__ = ['PageResult', 'BrokerConnection', 'Delivery', 'Publisher', 'Consumer', 'ConsumeStats']
