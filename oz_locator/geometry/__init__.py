"""Geometry primitives: simplification, bounding boxes, preprocessing, spatial index"""
