"""Providers domain - public directory and admin provider flags"""
