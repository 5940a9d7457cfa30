"""Wire dialect adapters.

Each module maps FSPIOP message bodies to and from an alternate wire format.
Only ISO 20022 JSON is provided.
"""
