"""Protocol engine: transport, codec, framing, dispatch and subscriptions"""
