"""
GTSS Builder - General Traffic Signal Specification record store

A Python package for entering traffic-signal configuration records and
exporting them as GTSS delimited-text documents, using the Functional
Core, Imperative Shell architecture.

Structure:
- schemas   : pydantic models for Agency, Signal, Phase and Detector
- data/     : Imperative Shell (record store, storage backends, archive I/O)
- analysis/ : Functional Core (document rendering, completeness, phase helpers)
- cli       : ``gtss`` command-line front end
"""

__version__ = "0.1.0"
