"""Parsing module for the destination descriptor DSL."""

from picklecast.parsing.descriptor_parser import DescriptorParser, parse_descriptors

__all__ = [
    "DescriptorParser",
    "parse_descriptors",
]
