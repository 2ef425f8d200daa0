"""Engine core: auctions, swaps, compatibility scoring and storage"""
