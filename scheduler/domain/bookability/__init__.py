"""Bookability domain - which providers a patient with a given payer can book"""
