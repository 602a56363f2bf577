"""Parley - Services"""
