"""Service instances domain - which intake service and EMR mapping a payer books"""
