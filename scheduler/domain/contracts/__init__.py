"""Contracts domain - provider/payer network contracts"""
