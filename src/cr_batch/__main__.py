from cr_batch.cli import main

main()
